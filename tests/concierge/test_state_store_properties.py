"""Property-based tests for state persistence inside comment text.

**Validates: state round trip, compression, tolerant extraction and
legacy migration**

Feature: support-concierge

Testing Configuration:
- Library: Hypothesis (Python)
- Minimum iterations: 100 per property test
- Tag format: Feature: support-concierge, Property N: <property_text>
"""

from datetime import datetime, timedelta, timezone

from hypothesis import given, settings, strategies as st

from src.concierge.config import OrchestrationConfig
from src.concierge.github.models import IssueComment
from src.concierge.state import (
    ConversationState,
    ConversationTracker,
    SharedFinding,
    StateLoader,
    StateStore,
    UserConversation,
)
from src.concierge.state.store import COMPRESSED_TAG, STATE_MARKER_PREFIX
from tests.conftest import BOT, FIXED_NOW, FakeClock


# =============================================================================
# Strategies
# =============================================================================

usernames = st.from_regex(r"[a-z][a-z0-9-]{0,15}", fullmatch=True)
field_names = st.from_regex(r"[a-z_]{1,20}", fullmatch=True)
free_text = st.text(max_size=200)
timestamps = st.datetimes(
    min_value=datetime(2020, 1, 1),
    max_value=datetime(2030, 1, 1),
    timezones=st.just(timezone.utc),
)


@st.composite
def user_conversations(draw, username=None) -> UserConversation:
    name = username or draw(usernames)
    first = draw(timestamps)
    return UserConversation(
        username=name,
        loop_count=draw(st.integers(min_value=0, max_value=10)),
        is_exhausted=draw(st.booleans()),
        is_finalized=draw(st.booleans()),
        finalized_at=draw(st.one_of(st.none(), timestamps)),
        asked_fields=draw(st.lists(field_names, max_size=8, unique=True)),
        off_topic_strike_count=draw(st.integers(min_value=0, max_value=3)),
        is_off_topic_blocked=draw(st.booleans()),
        first_interaction=first,
        last_interaction=first + timedelta(minutes=draw(st.integers(0, 10000))),
        case_packet=draw(st.dictionaries(field_names, free_text, max_size=5)),
    )


@st.composite
def conversation_states(draw) -> ConversationState:
    names = draw(st.lists(usernames, min_size=0, max_size=4, unique=True))
    conversations = {name: draw(user_conversations(username=name)) for name in names}
    findings = draw(
        st.lists(
            st.builds(
                SharedFinding,
                discovered_by=usernames,
                category=st.sampled_from(["", "bug_report", "build_issue"]),
                content=free_text,
            ),
            max_size=5,
        )
    )
    return ConversationState(
        thread_key=f"acme/widgets#{draw(st.integers(1, 99999))}",
        category=draw(st.sampled_from(["", "bug_report", "configuration"])),
        completeness_score=draw(st.integers(0, 100)),
        shared_findings=findings,
        user_conversations=conversations,
        last_updated=draw(timestamps),
        issue_author=names[0] if names else draw(usernames),
    )


# =============================================================================
# Property 1: Round trip
# =============================================================================


class TestStateRoundTrip:
    """Property 1: Embedded state decodes to an equal state.

    *For any* reachable state, extracting from the embedded text yields a
    state equal to the one embedded, whether or not it was compressed.
    """

    @settings(max_examples=100)
    @given(state=conversation_states(), visible=free_text)
    def test_embed_then_extract_returns_equal_state(self, state, visible):
        store = StateStore()
        assert store.extract(store.embed(visible, state)) == state

    @settings(max_examples=100)
    @given(state=conversation_states())
    def test_round_trip_with_forced_compression(self, state):
        store = StateStore(compression_threshold_bytes=1)
        body = store.embed("", state)
        assert COMPRESSED_TAG in body
        assert store.extract(body) == state

    def test_large_state_is_compressed_and_recovered(self):
        """Serialized JSON over the threshold is written compressed."""
        conversation = UserConversation(
            username="alice",
            case_packet={f"field_{i}": "x" * 100 for i in range(50)},
        )
        state = ConversationState(thread_key="acme/widgets#1").with_conversation(conversation)
        assert len(state.model_dump_json().encode()) > 5000

        store = StateStore()
        payload = store.serialize(state)
        assert payload.startswith(COMPRESSED_TAG)
        assert store.extract(store.embed("Hello", state)) == state

    def test_small_state_is_plain_json(self):
        store = StateStore()
        body = store.embed("Hi", ConversationState(thread_key="acme/widgets#1"))
        assert body.startswith("Hi\n\n" + STATE_MARKER_PREFIX)
        assert COMPRESSED_TAG not in body

    def test_user_text_cannot_close_the_marker(self):
        """Angle brackets in stored text never terminate the HTML comment."""
        conversation = UserConversation(
            username="alice",
            case_packet={"error_message": "--> <!-- supportbot-state\n{}\n-->"},
        )
        state = ConversationState(thread_key="acme/widgets#1").with_conversation(conversation)
        store = StateStore()
        body = store.embed("", state)
        assert body.count("-->") == 1
        assert store.extract(body) == state


# =============================================================================
# Property 2: Tolerant extraction
# =============================================================================


class TestTolerantExtraction:
    """Property 2: Unreadable markers are treated as no state.

    *For any* arbitrary text, extract never raises and returns None when
    the text has no decodable marker.
    """

    @settings(max_examples=100)
    @given(text=st.text(max_size=500))
    def test_extract_never_raises(self, text):
        store = StateStore()
        result = store.extract(text)
        assert result is None or isinstance(result, ConversationState)

    def test_corrupt_json_returns_none(self):
        store = StateStore()
        assert store.extract("<!-- supportbot-state\n{not json\n-->") is None

    def test_corrupt_compressed_payload_returns_none(self):
        store = StateStore()
        assert store.extract("<!-- supportbot-state\ncompressed:@@@@\n-->") is None

    def test_newer_schema_version_is_unreadable(self):
        store = StateStore()
        text = '<!-- supportbot-state\n{"schema_version": 99}\n-->'
        assert store.extract(text) is None

    def test_unknown_fields_are_ignored(self):
        store = StateStore()
        text = (
            '<!-- supportbot-state\n'
            '{"schema_version": 2, "thread_key": "acme/widgets#3", "future_field": 1}\n'
            '-->'
        )
        state = store.extract(text)
        assert state is not None
        assert state.thread_key == "acme/widgets#3"

    def test_last_marker_wins(self):
        store = StateStore()
        first = ConversationState(thread_key="acme/widgets#1", category="bug_report")
        second = ConversationState(thread_key="acme/widgets#1", category="documentation")
        text = store.embed("a", first) + "\n\n" + store.embed("b", second)
        assert store.extract(text).category == "documentation"

    def test_legacy_fenced_block_is_read(self):
        store = StateStore()
        text = (
            "Earlier reply\n\n```supportbot-state\n"
            '{"thread_key": "acme/widgets#7", "loop_count": 2}\n```'
        )
        state = store.extract(text)
        assert state is not None
        assert state.loop_count == 2

    def test_embed_replaces_existing_markers(self):
        store = StateStore()
        old = store.embed("Reply", ConversationState(thread_key="acme/widgets#1"))
        new = store.embed(old, ConversationState(thread_key="acme/widgets#2"))
        assert len(store.find_payloads(new)) == 1
        assert store.extract(new).thread_key == "acme/widgets#2"
        assert store.remove(new) == "Reply"


# =============================================================================
# Property 3: Pruning bounds
# =============================================================================


class TestPruning:
    """Property 3: Pruning bounds history without touching counters.

    *For any* state, the pruned copy keeps at most the configured number
    of asked fields per user and shared findings, and the same loop counts.
    """

    @settings(max_examples=100)
    @given(
        fields=st.lists(field_names, min_size=0, max_size=40, unique=True),
        loops=st.integers(0, 10),
    )
    def test_prune_keeps_most_recent_asked_fields(self, fields, loops):
        store = StateStore(max_asked_fields_history=5, max_shared_findings=2)
        conversation = UserConversation(username="alice", loop_count=loops, asked_fields=fields)
        state = ConversationState(thread_key="acme/widgets#1").with_conversation(conversation)

        pruned = store.prune(state).get_conversation("alice")
        assert pruned.asked_fields == fields[-5:]
        assert pruned.loop_count == loops

    def test_prune_keeps_most_recent_findings(self):
        store = StateStore(max_shared_findings=2)
        state = ConversationState(thread_key="acme/widgets#1")
        for i in range(4):
            state = state.with_finding(SharedFinding(discovered_by="alice", content=f"finding {i}"))
        pruned = store.prune(state)
        assert [f.content for f in pruned.shared_findings] == ["finding 2", "finding 3"]


# =============================================================================
# Property 4: Loader trusts only the bot
# =============================================================================


def _bot_comment(store, state, comment_id, minutes, author=BOT):
    return IssueComment(
        id=comment_id,
        author=author,
        body=store.embed(f"reply {comment_id}", state),
        created_at=FIXED_NOW + timedelta(minutes=minutes),
    )


class TestStateLoader:
    """Property 4: The newest bot-authored decodable marker is authoritative."""

    def setup_method(self):
        self.store = StateStore()
        self.loader = StateLoader(self.store, OrchestrationConfig(bot_username=BOT))

    def test_newest_bot_comment_wins_regardless_of_order(self):
        old = ConversationState(thread_key="acme/widgets#1", category="old")
        new = ConversationState(thread_key="acme/widgets#1", category="new")
        comments = [
            _bot_comment(self.store, new, 2, minutes=10),
            _bot_comment(self.store, old, 1, minutes=1),
        ]
        assert self.loader.load(comments).category == "new"

    def test_forged_marker_from_user_is_ignored(self):
        real = ConversationState(thread_key="acme/widgets#1", category="real")
        forged = ConversationState(thread_key="acme/widgets#1", category="forged")
        comments = [
            _bot_comment(self.store, real, 1, minutes=1),
            _bot_comment(self.store, forged, 2, minutes=5, author="mallory"),
        ]
        assert self.loader.load(comments).category == "real"

    def test_unreadable_newest_falls_back_to_older(self):
        good = ConversationState(thread_key="acme/widgets#1", category="good")
        broken = IssueComment(
            id=3,
            author=BOT,
            body="oops\n\n<!-- supportbot-state\n{broken\n-->",
            created_at=FIXED_NOW + timedelta(minutes=30),
        )
        comments = [_bot_comment(self.store, good, 1, minutes=1), broken]
        assert self.loader.load(comments).category == "good"

    def test_no_markers_returns_none(self):
        comments = [IssueComment(id=1, author="alice", body="hello")]
        assert self.loader.load(comments) is None


# =============================================================================
# Property 5: Legacy migration
# =============================================================================


class TestLegacyMigration:
    """Property 5: Migration moves legacy fields to the owner exactly once.

    *For any* legacy record, migrating yields a single owner conversation
    carrying the legacy counters, and migrating again changes nothing.
    """

    @settings(max_examples=100)
    @given(
        loops=st.integers(1, 10),
        fields=st.lists(field_names, max_size=6, unique=True),
        finalized=st.booleans(),
    )
    def test_migration_is_idempotent(self, loops, fields, finalized):
        tracker = ConversationTracker(clock=FakeClock())
        legacy = ConversationState(
            thread_key="acme/widgets#1",
            issue_author="alice",
            loop_count=loops,
            asked_fields=fields,
            is_finalized=finalized,
        )

        migrated = tracker.migrate_legacy(legacy)
        conversation = migrated.get_conversation("alice")
        assert conversation.loop_count == loops
        assert conversation.asked_fields == fields
        assert conversation.is_finalized == finalized
        assert migrated.loop_count == 0
        assert migrated.asked_fields == []
        assert not migrated.has_legacy_fields
        assert tracker.migrate_legacy(migrated) == migrated

    def test_migration_without_author_is_skipped(self):
        tracker = ConversationTracker(clock=FakeClock())
        legacy = ConversationState(thread_key="acme/widgets#1", loop_count=2)
        assert tracker.migrate_legacy(legacy) == legacy
