"""Tests for workflow phase lookup and sequencing."""

import pytest

from relaypake.protocol.errors import ProtocolMismatch
from relaypake.protocol.phases import Phase, Workflow, next_phase, require_phase, to_phase


class TestPhases:

    def test_lookup_is_case_insensitive(self):
        assert to_phase("LOGIN", "Open") is Phase.LOGIN_OPEN

    def test_unknown_step(self):
        with pytest.raises(ProtocolMismatch):
            to_phase("setup", "close")

    def test_unknown_workflow(self):
        with pytest.raises(ProtocolMismatch):
            to_phase("share", "open")

    def test_phase_knows_its_workflow(self):
        assert Phase.DEV_INBOX.workflow is Workflow.DEV
        assert Phase.DEV_INBOX.step == "inbox"

    def test_foreign_phase_rejected(self):
        with pytest.raises(ProtocolMismatch):
            require_phase(Phase.SETUP_PUB, Workflow.LOGIN)

    def test_setup_sequence(self):
        assert next_phase(Phase.SETUP_PUB) is Phase.SETUP_APP
        assert next_phase(Phase.SETUP_APP) is Phase.SETUP_TOKEN
        assert next_phase(Phase.SETUP_TOKEN) is None

    def test_login_sequence(self):
        assert next_phase(Phase.LOGIN_OPEN) is Phase.LOGIN_CLOSE
        assert next_phase(Phase.LOGIN_CLOSE) is None
