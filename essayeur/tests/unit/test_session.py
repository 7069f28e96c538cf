"""
Tests for session binding and hook points.
"""

import dataclasses

import pytest

from conftest import ACCOUNTS, case

from essayeur.core.session import TestRunSession
from essayeur.domain.exceptions import RpcError, SessionBindingError
from essayeur.testing import context as test_context


@pytest.fixture
def make_session(chain, resolver, reporter):
    def factory():
        return TestRunSession(chain, ACCOUNTS, resolver, reporter=reporter)

    return factory


async def test_session_binds_context_for_its_lifetime(make_session):
    session = make_session()

    async with session:
        assert session.bound
        assert test_context.current() is session.context

    assert not test_context.is_bound()
    assert session.closed
    with pytest.raises(RuntimeError):
        test_context.current()


async def test_two_sessions_are_never_bound_together(make_session):
    first, second = make_session(), make_session()

    async with first:
        with pytest.raises(SessionBindingError):
            async with second:
                pass
        assert test_context.current() is first.context

    assert not second.bound


async def test_session_is_single_use(make_session):
    session = make_session()
    async with session:
        pass

    with pytest.raises(SessionBindingError):
        async with session:
            pass


async def test_new_session_never_sees_old_bindings(make_session):
    first, second = make_session(), make_session()

    async with first:
        old = test_context.current()
    async with second:
        new = test_context.current()

    assert new is not old
    assert new.session_id != old.session_id
    assert new.accounts == old.accounts


async def test_binding_released_when_body_raises(make_session):
    session = make_session()

    with pytest.raises(ValueError):
        async with session:
            raise ValueError("test stage blew up")

    assert not test_context.is_bound()


async def test_initialize_snapshots_once(make_session, chain):
    session = make_session()

    await session.initialize()
    await session.initialize()

    assert chain.snapshots == 1
    assert session.snapshot_id == "0x1"


async def test_initialize_tolerates_nodes_without_snapshots(make_session, chain):
    chain.snapshot_error = RpcError("evm_snapshot failed: method not found")
    session = make_session()

    await session.initialize()

    assert session.snapshot_id is None
    assert session.initialized


async def test_end_test_counts_events_of_failed_tests(make_session, chain):
    session = make_session()
    chain.block = 5

    await session.start_test("Contract: Token::test_transfer")
    chain.logs = [{"block": 4}, {"block": 5}, {"block": 6}]
    failed = case("test_transfer", "fail")
    await session.end_test("Contract: Token::test_transfer", failed)

    assert failed.events_emitted == 2


async def test_end_test_leaves_passing_tests_alone(make_session, chain):
    session = make_session()
    chain.logs = [{"block": 0}]

    await session.start_test("k")
    passed = case("test_ok")
    await session.end_test("k", passed)

    assert passed.events_emitted is None


async def test_hooks_work_without_chain(resolver, reporter):
    session = TestRunSession(None, [], resolver, reporter=reporter)

    await session.initialize()
    await session.start_test("k")
    await session.end_test("k", case("test_x", "error"))

    assert session.context.default_account is None


def test_context_carries_only_session_bindings(chain, resolver):
    context = test_context.TestContext(
        chain=chain, accounts=list(ACCOUNTS), resolver=resolver, session_id=7
    )

    assert [f.name for f in dataclasses.fields(context)] == [
        "chain", "accounts", "resolver", "session_id",
    ]
    assert context.default_account == ACCOUNTS[0]
