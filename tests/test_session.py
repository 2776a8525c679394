"""
Unit Tests for Sessions

Test coverage for:
- History buffer bound and order
- Conversation phase transitions
- Per-identity isolation of state and locks
"""

from commeta.session import ConversationState, HistoryBuffer, Phase, SessionStore


class TestHistoryBuffer:
    """Tests for the bounded transcript."""

    def test_keeps_last_twenty_in_order(self):
        """After 25 appends exactly the 20 most recent remain, oldest first."""
        history = HistoryBuffer()
        for i in range(25):
            history.append("user", f"message {i}")

        contents = [entry.content for entry in history.entries()]
        assert len(history) == 20
        assert contents == [f"message {i}" for i in range(5, 25)]

    def test_recent_window(self):
        history = HistoryBuffer()
        for i in range(5):
            history.append("assistant", str(i))
        assert [e.content for e in history.recent(2)] == ["3", "4"]
        assert history.recent(0) == []

    def test_to_message(self):
        history = HistoryBuffer()
        history.append("user", "hi")
        assert history.entries()[0].to_message() == {"role": "user", "content": "hi"}


class TestConversationState:
    """Tests for phase bookkeeping."""

    def test_initial_state_is_idle(self):
        state = ConversationState()
        assert state.phase == Phase.IDLE
        assert state.is_pending is False
        assert state.repo_path is None

    def test_commit_then_clear(self):
        state = ConversationState()
        state.await_commit("/repos/1", "add a button")
        assert state.phase == Phase.AWAITING_COMMIT_CONFIRMATION
        assert state.last_instruction == "add a button"
        state.clear()
        assert state.phase == Phase.IDLE
        assert state.last_instruction is None

    def test_deploy_replaces_commit(self):
        """Only one phase can be active."""
        state = ConversationState()
        state.await_commit("/repos/1", "x")
        state.await_deploy("/repos/1")
        assert state.phase == Phase.AWAITING_DEPLOY_CONFIRMATION


class TestSessionStore:
    """Tests for lazily created per-identity sessions."""

    def test_state_is_per_identity(self):
        sessions = SessionStore()
        sessions.state("alice").await_commit("/repos/1", "x")
        assert sessions.state("bob").phase == Phase.IDLE
        assert sessions.state("alice").phase == Phase.AWAITING_COMMIT_CONFIRMATION

    def test_lock_is_stable_per_identity(self):
        sessions = SessionStore()
        assert sessions.lock("alice") is sessions.lock("alice")
        assert sessions.lock("alice") is not sessions.lock("bob")

    def test_history_limit_is_configurable(self):
        sessions = SessionStore(history_limit=3)
        for i in range(5):
            sessions.history("alice").append("user", str(i))
        assert len(sessions.history("alice")) == 3
