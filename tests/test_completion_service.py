from __future__ import annotations

import tempfile
import time
import unittest
from pathlib import Path
from types import SimpleNamespace

from conversation.models import FunctionInvocation
from conversation.models import Role
from conversation.models import TextMessage
from relay.completion import CompletionService
from relay.completion import load_function_declarations
from relay.errors import CompletionError


def _choice(*, role="assistant", content=None, function_call=None, tool_calls=None):
    return SimpleNamespace(
        message=SimpleNamespace(
            role=role,
            content=content,
            function_call=function_call,
            tool_calls=tool_calls,
        )
    )


class _DummyCompletions:
    def __init__(self, response=None, *, exc: Exception | None = None, sleep: float = 0.0):
        self._response = response
        self._exc = exc
        self._sleep = sleep
        self.calls: list[dict] = []

    def create(self, *args, **kwargs):
        self.calls.append(kwargs)
        if self._sleep:
            time.sleep(self._sleep)
        if self._exc is not None:
            raise self._exc
        return self._response


class _DummyModerations:
    def __init__(self, results):
        self._results = results
        self.inputs: list[str] = []

    def create(self, *args, **kwargs):
        self.inputs.append(kwargs.get("input"))
        return SimpleNamespace(results=self._results)


class _DummyClient:
    def __init__(self, completions=None, moderations=None):
        self.chat = SimpleNamespace(completions=completions or _DummyCompletions(SimpleNamespace(choices=[])))
        self.moderations = moderations or _DummyModerations([SimpleNamespace(flagged=False, categories=None)])


class CompletionServiceTests(unittest.IsolatedAsyncioTestCase):
    async def test_complete_sends_request_and_parses_candidates(self):
        completions = _DummyCompletions(
            SimpleNamespace(
                choices=[
                    _choice(content="Hello!"),
                    _choice(function_call=SimpleNamespace(name="react", arguments='{"reaction_name": "👍"}')),
                ]
            )
        )
        functions = [{"name": "react", "parameters": {"type": "object"}}]
        service = CompletionService(client=_DummyClient(completions), functions=functions)

        candidates = await service.complete(
            messages=[{"role": "user", "content": "hi"}],
            model="gpt-3.5-turbo",
            max_tokens=256,
            temperature=0.5,
        )

        self.assertEqual(candidates[0].payload, TextMessage("Hello!"))
        self.assertIs(candidates[0].role, Role.ASSISTANT)
        self.assertTrue(candidates[0].usable)
        self.assertEqual(candidates[1].payload, FunctionInvocation(name="react", arguments='{"reaction_name": "👍"}'))
        self.assertTrue(candidates[1].usable)

        sent = completions.calls[0]
        self.assertEqual(sent["model"], "gpt-3.5-turbo")
        self.assertEqual(sent["max_tokens"], 256)
        self.assertEqual(sent["temperature"], 0.5)
        self.assertEqual(sent["functions"], functions)

    async def test_functions_omitted_when_none_declared(self):
        completions = _DummyCompletions(SimpleNamespace(choices=[_choice(content="ok")]))
        service = CompletionService(client=_DummyClient(completions))
        await service.complete(messages=[], model="m", max_tokens=10, temperature=0.5)
        self.assertNotIn("functions", completions.calls[0])

    async def test_tool_call_is_read_as_invocation(self):
        call = SimpleNamespace(function=SimpleNamespace(name="react", arguments="{}"))
        completions = _DummyCompletions(SimpleNamespace(choices=[_choice(tool_calls=[call])]))
        service = CompletionService(client=_DummyClient(completions))
        candidates = await service.complete(messages=[], model="m", max_tokens=10, temperature=0.5)
        self.assertEqual(candidates[0].payload, FunctionInvocation(name="react", arguments="{}"))

    async def test_empty_content_is_not_usable(self):
        completions = _DummyCompletions(
            SimpleNamespace(choices=[_choice(content=None), _choice(role="user", content="echo")])
        )
        service = CompletionService(client=_DummyClient(completions))
        candidates = await service.complete(messages=[], model="m", max_tokens=10, temperature=0.5)
        self.assertEqual([c.usable for c in candidates], [False, False])

    async def test_transport_failure_becomes_completion_error(self):
        completions = _DummyCompletions(exc=ConnectionError("connection reset"))
        service = CompletionService(client=_DummyClient(completions))
        with self.assertRaises(CompletionError) as ctx:
            await service.complete(messages=[], model="m", max_tokens=10, temperature=0.5)
        self.assertEqual(ctx.exception.code, "transport")

    async def test_timeout_becomes_completion_error(self):
        completions = _DummyCompletions(SimpleNamespace(choices=[]), sleep=0.5)
        service = CompletionService(client=_DummyClient(completions), timeout_seconds=0.05)
        with self.assertRaises(CompletionError) as ctx:
            await service.complete(messages=[], model="m", max_tokens=10, temperature=0.5)
        self.assertEqual(ctx.exception.code, "timeout")

    async def test_malformed_response_becomes_completion_error(self):
        completions = _DummyCompletions(SimpleNamespace(choices=None))
        service = CompletionService(client=_DummyClient(completions))
        with self.assertRaises(CompletionError) as ctx:
            await service.complete(messages=[], model="m", max_tokens=10, temperature=0.5)
        self.assertEqual(ctx.exception.code, "malformed")

    async def test_malformed_choice_does_not_hide_usable_one(self):
        completions = _DummyCompletions(
            SimpleNamespace(
                choices=[
                    _choice(content="Hello!"),
                    _choice(role="critic", content="??"),
                    _choice(function_call=SimpleNamespace(name="", arguments="{}")),
                ]
            )
        )
        service = CompletionService(client=_DummyClient(completions))
        candidates = await service.complete(messages=[], model="m", max_tokens=10, temperature=0.5)
        self.assertEqual([c.payload for c in candidates], [TextMessage("Hello!")])

    async def test_all_choices_malformed_is_completion_error(self):
        completions = _DummyCompletions(SimpleNamespace(choices=[_choice(role="critic", content="??")]))
        service = CompletionService(client=_DummyClient(completions))
        with self.assertRaises(CompletionError):
            await service.complete(messages=[], model="m", max_tokens=10, temperature=0.5)

    async def test_moderation_reports_flag_and_categories(self):
        moderations = _DummyModerations(
            [SimpleNamespace(flagged=True, categories={"harassment": True, "violence": False})]
        )
        service = CompletionService(client=_DummyClient(moderations=moderations))

        verdict = await service.moderate("something rude")
        self.assertTrue(verdict.flagged)
        self.assertEqual(verdict.categories, ("harassment",))
        self.assertEqual(moderations.inputs, ["something rude"])

    async def test_moderation_passes_clean_text(self):
        service = CompletionService(client=_DummyClient())
        verdict = await service.moderate("hello")
        self.assertFalse(verdict.flagged)
        self.assertEqual(verdict.categories, ())


class LoadFunctionDeclarationsTests(unittest.TestCase):
    def test_unset_path_disables_functions(self):
        self.assertEqual(load_function_declarations(""), ([], None))

    def test_reads_yaml_list(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "functions.yml"
            path.write_text(
                "- name: react\n"
                "  description: React with an emoji\n"
                "  parameters:\n"
                "    type: object\n"
                "- description: nameless entries are skipped\n",
                encoding="utf-8",
            )
            functions, warning = load_function_declarations(path)
        self.assertIsNone(warning)
        self.assertEqual([f["name"] for f in functions], ["react"])

    def test_invalid_format_warns(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "functions.yml"
            path.write_text("name: react\n", encoding="utf-8")
            functions, warning = load_function_declarations(path)
        self.assertEqual(functions, [])
        self.assertIn("Invalid", warning)

    def test_shipped_declarations_load(self):
        path = Path(__file__).resolve().parents[1] / "config" / "functions.yml"
        functions, warning = load_function_declarations(path)
        self.assertIsNone(warning)
        self.assertIn("react", [f["name"] for f in functions])


if __name__ == "__main__":
    unittest.main()
