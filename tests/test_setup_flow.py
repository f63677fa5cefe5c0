"""End-to-end SETUP against a simulated counterpart that answers on the relay."""

import asyncio

import pytest

from relaypake.crypto.pake import server_auth, server_verify
from relaypake.crypto.primitives import token_key
from relaypake.crypto.sealed import open_sealed, seal
from relaypake.protocol.constants import APP_AUTH, APP_IN, APP_OUT, STEP
from relaypake.protocol.envelope import Envelope, decode, encode
from relaypake.protocol.errors import PakeRejected, StepMismatch, Timeout
from relaypake.protocol.phases import Phase
from relaypake.protocol.retry import RetryPolicy
from relaypake.protocol.shapes import ClientAuthData, ClientAuthResult, Installation, Installed
from relaypake.relay.slots import EnvSlot, env_slots
from relaypake.workflow.common import load_installation
from relaypake.workflow.setup import SetupWorkflow

from fakes import MemoryMailbox, no_sleep

PEPPER = b"counterpart-pepper"


class FakeApps:
    """Manifest exchange and installation token provider."""

    def __init__(self, app, installed_after=1):
        self.app = app
        self.installed_after = installed_after
        self.codes = []
        self.lookups = 0

    def convert_manifest(self, code):
        self.codes.append(code)
        return self.app

    def find_installation(self, app):
        self.lookups += 1
        return 7 if self.lookups >= self.installed_after else None

    def create_installation_token(self, app, installation_id):
        assert installation_id == 7
        return Installed(token="ghs_issued", permissions={"secrets": "write"})


def _counterpart(for_pages, code=b"manifest-code"):
    """Answer ``app__in`` the way the pages side does: sealed code plus server data."""
    env = decode(for_pages)
    assert env.command == APP_IN
    data = ClientAuthData.from_tree(env.tree["client_auth_data"])
    server_data, final = server_auth(data, data.pw, PEPPER, 1000)
    pasted = {"C": seal(code, token_key(final.token)).to_tree(), "S": server_data.to_tree()}
    return encode(Envelope("", pasted)), final


@pytest.fixture
def policy():
    return RetryPolicy(interval_ms=1, max_tries=5)


class TestSetup:

    def test_full_setup(self, app_credentials, policy):
        environ = {}
        mailbox = MemoryMailbox()
        apps = FakeApps(app_credentials, installed_after=3)
        workflow = SetupWorkflow(mailbox, apps, env_slots(environ), policy, no_sleep)

        pub = asyncio.run(workflow.run(Phase.SETUP_PUB, []))
        assert decode(pub.for_next).command == STEP
        mailbox.text, final = _counterpart(pub.for_pages)

        app = asyncio.run(workflow.run(Phase.SETUP_APP, [decode(pub.for_next)]))
        assert apps.codes == ["manifest-code"]
        out = decode(app.for_pages)
        assert out.command == APP_OUT
        assert server_verify(final, ClientAuthResult.from_tree(out.tree["client_auth_result"]))

        token = asyncio.run(workflow.run(Phase.SETUP_TOKEN, [decode(app.for_next)]))
        assert apps.lookups == 3
        assert token.for_next == ""
        auth = decode(token.for_pages)
        assert auth.command == APP_AUTH
        assert open_sealed(auth.tree, token_key(final.token)) == b"ghs_issued"

        stored = load_installation(EnvSlot("INSTALLATION", environ))
        assert stored == Installation(
            installed=Installed(token="ghs_issued", permissions={"secrets": "write"}),
            shared=final.token, app=app_credentials,
        )

    def test_app_waits_for_pasted_reply(self, app_credentials, policy):
        workflow = SetupWorkflow(MemoryMailbox(), FakeApps(app_credentials), env_slots({}), policy, no_sleep)
        pub = workflow.pub()
        pasted, _ = _counterpart(pub.for_pages)
        mailbox = workflow.mailbox
        mailbox.text = pub.for_pages
        sleeps = []

        async def sleep(_s):
            sleeps.append(1)
            if len(sleeps) == 3:
                mailbox.text = pasted

        workflow.sleep = sleep
        asyncio.run(workflow.app(decode(pub.for_next)))
        assert mailbox.reads == 3

    def test_app_times_out(self, app_credentials, policy):
        mailbox = MemoryMailbox()
        workflow = SetupWorkflow(mailbox, FakeApps(app_credentials), env_slots({}), policy, no_sleep)
        pub = workflow.pub()
        with pytest.raises(Timeout):
            asyncio.run(workflow.app(decode(pub.for_next)))
        assert mailbox.reads == policy.max_tries

    def test_app_rejects_foreign_server(self, app_credentials, policy):
        mailbox = MemoryMailbox()
        workflow = SetupWorkflow(mailbox, FakeApps(app_credentials), env_slots({}), policy, no_sleep)
        first = workflow.pub()
        second = workflow.pub()
        mailbox.text, _ = _counterpart(second.for_pages)
        with pytest.raises(PakeRejected):
            asyncio.run(workflow.app(decode(first.for_next)))

    def test_app_rejects_wrong_step(self, app_credentials, policy):
        workflow = SetupWorkflow(MemoryMailbox(), FakeApps(app_credentials), env_slots({}), policy, no_sleep)
        with pytest.raises(StepMismatch):
            asyncio.run(workflow.run(Phase.SETUP_APP, [Envelope(STEP, {"r": b"only"})]))
        with pytest.raises(StepMismatch):
            asyncio.run(workflow.run(Phase.SETUP_APP, []))

    def test_token_rejects_partial_app(self, app_credentials, policy):
        workflow = SetupWorkflow(MemoryMailbox(), FakeApps(app_credentials), env_slots({}), policy, no_sleep)
        tree = {"shared": "ab" * 32, "app": {"id": "1", "client_id": "c"}}
        with pytest.raises(StepMismatch):
            asyncio.run(workflow.run(Phase.SETUP_TOKEN, [Envelope(STEP, tree)]))

    def test_token_times_out_without_installation(self, app_credentials, policy):
        apps = FakeApps(app_credentials, installed_after=100)
        workflow = SetupWorkflow(MemoryMailbox(), apps, env_slots({}), policy, no_sleep)
        step = Envelope(STEP, {"shared": "ab" * 32, "app": app_credentials.to_tree()})
        with pytest.raises(Timeout, match="installation"):
            asyncio.run(workflow.token(step))
        assert apps.lookups == policy.max_tries
