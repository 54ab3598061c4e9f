from __future__ import annotations

import unittest
from types import SimpleNamespace
from unittest import mock

try:
    from misc.discord_gates import message_in_allowed_channels
    from misc.discord_gates import parse_id_set
    from misc.discord_gates import should_reply
except ModuleNotFoundError:
    message_in_allowed_channels = None
    parse_id_set = None
    should_reply = None


@unittest.skipIf(message_in_allowed_channels is None, "discord.py not installed")
class DiscordGatesTests(unittest.TestCase):
    def test_empty_allowlist_allows_every_channel(self):
        message = SimpleNamespace(
            guild=SimpleNamespace(id=1),
            channel=SimpleNamespace(id=999),
        )
        self.assertTrue(message_in_allowed_channels(message, allowed_channel_ids=set()))

    def test_dm_is_allowed_without_channel_allowlist(self):
        message = SimpleNamespace(
            guild=None,
            channel=SimpleNamespace(id=999),
        )
        self.assertTrue(message_in_allowed_channels(message, allowed_channel_ids={123}))

    def test_allowed_channel_is_allowed(self):
        message = SimpleNamespace(
            guild=SimpleNamespace(id=1),
            channel=SimpleNamespace(id=123),
        )
        self.assertTrue(message_in_allowed_channels(message, allowed_channel_ids={123}))

    def test_disallowed_channel_is_blocked(self):
        message = SimpleNamespace(
            guild=SimpleNamespace(id=1),
            channel=SimpleNamespace(id=999),
        )
        self.assertFalse(message_in_allowed_channels(message, allowed_channel_ids={123}))

    def test_thread_parent_allowlist_is_honored(self):
        class FakeThread:
            def __init__(self, channel_id: int, parent_id: int):
                self.id = int(channel_id)
                self.parent = SimpleNamespace(id=int(parent_id))

        message = SimpleNamespace(
            guild=SimpleNamespace(id=1),
            channel=FakeThread(channel_id=777, parent_id=123),
        )
        with mock.patch("misc.discord_gates.discord.Thread", FakeThread):
            self.assertTrue(message_in_allowed_channels(message, allowed_channel_ids={123}))


@unittest.skipIf(should_reply is None, "discord.py not installed")
class ShouldReplyTests(unittest.TestCase):
    def setUp(self):
        self.bot_user = SimpleNamespace(id=1000)

    def test_private_message_gets_reply(self):
        message = SimpleNamespace(guild=None, mentions=[])
        self.assertTrue(should_reply(message, self.bot_user))

    def test_mention_in_guild_gets_reply(self):
        message = SimpleNamespace(guild=SimpleNamespace(id=1), mentions=[SimpleNamespace(id=1000)])
        self.assertTrue(should_reply(message, self.bot_user))

    def test_unmentioned_guild_message_is_ignored(self):
        message = SimpleNamespace(guild=SimpleNamespace(id=1), mentions=[SimpleNamespace(id=5)])
        self.assertFalse(should_reply(message, self.bot_user))

    def test_parse_id_set(self):
        self.assertEqual(
            parse_id_set("123456789012345678, 876543210987654321;junk 12"),
            {123456789012345678, 876543210987654321},
        )
        self.assertEqual(parse_id_set(""), set())


if __name__ == "__main__":
    unittest.main()
