# tests/test_connection_pool.py

from __future__ import annotations

import json

import pytest

from queue_pilot.cdp.pool import ConnectionPool, ConnectionRecord, Probe, rank_candidates
from queue_pilot.core.errors import ConnectionUnavailable
from queue_pilot.core.results import SendStatus

from .fakes import PAYLOAD_SCRIPT, FakeLink, FakeTargets


class Harness(FakeTargets):
    """Pool wired to in-memory targets: `targets` is what discovery returns."""

    def __init__(self, settings, shared, clock) -> None:
        super().__init__(settings.cdp_port)
        self.pool = ConnectionPool(
            settings,
            shared,
            discover=self.discover,
            link_factory=self.link,
            payload_loader=lambda: PAYLOAD_SCRIPT,
            clock=clock,
        )


@pytest.fixture()
def harness(settings, shared, clock) -> Harness:
    return Harness(settings, shared, clock)


def _injections(link: FakeLink) -> int:
    return sum(1 for e in link.evaluated if e.startswith("/*payload*/"))


def _starts(link: FakeLink) -> list[dict]:
    prefix = "if(window.__autoAcceptStart) window.__autoAcceptStart("
    return [json.loads(e[len(prefix) : -1]) for e in link.evaluated if e.startswith(prefix)]


@pytest.mark.asyncio
async def test_refresh_connects_and_injects_each_target(harness) -> None:
    harness.add("a")
    harness.add("b")

    assert await harness.pool.refresh(force=True) == 2

    for link in harness.links.values():
        assert _injections(link) == 1
        assert _starts(link) == [{"pollInterval": 1000, "ide": "antigravity", "bannedCommands": ["rm -rf /"]}]
    assert all(s["injected"] for s in harness.pool.connection_summaries())


@pytest.mark.asyncio
async def test_refresh_reuses_connections_and_skips_reinjection(harness) -> None:
    harness.add("a")
    await harness.pool.refresh(force=True)
    first = harness.links["9004:a"]

    await harness.pool.refresh(force=True)

    assert harness.links["9004:a"] is first
    assert _injections(first) == 1
    assert len(_starts(first)) == 2


@pytest.mark.asyncio
async def test_unforced_refresh_is_throttled(harness, clock) -> None:
    harness.add("a")
    await harness.pool.refresh(force=True)
    await harness.pool.refresh()
    assert harness.discoveries == 1

    clock.advance(2.5)
    await harness.pool.refresh()
    assert harness.discoveries == 2


@pytest.mark.asyncio
async def test_standby_suppresses_refresh_and_send(harness, shared) -> None:
    harness.add("a")
    shared.standby = True

    assert await harness.pool.refresh(force=True) == 0
    assert harness.discoveries == 0

    result = await harness.pool.send_prompt("hi")
    assert result.status == SendStatus.UNCONFIRMED
    assert result.reason == "standby"


@pytest.mark.asyncio
async def test_disabled_suppresses_refresh(harness, shared) -> None:
    harness.add("a")
    shared.enabled = False
    await harness.pool.refresh(force=True)
    assert harness.discoveries == 0


@pytest.mark.asyncio
async def test_discovery_failure_keeps_existing_connections(harness) -> None:
    harness.add("a")
    await harness.pool.refresh(force=True)

    harness.discovery_error = ConnectionUnavailable("endpoint down")
    assert await harness.pool.refresh(force=True) == 1


@pytest.mark.asyncio
async def test_connect_failure_skips_target(harness) -> None:
    harness.add("a", fail_connect=True)
    harness.add("b")
    assert await harness.pool.refresh(force=True) == 1
    assert [s["id"] for s in harness.pool.connection_summaries()] == ["9004:b"]


@pytest.mark.asyncio
async def test_failed_injection_is_retried_on_next_refresh(harness) -> None:
    remote = harness.add("a", fail_inject=True)
    await harness.pool.refresh(force=True)
    assert harness.pool.connection_summaries()[0]["injected"] is False

    remote.fail_inject = False
    await harness.pool.refresh(force=True)
    assert harness.pool.connection_summaries()[0]["injected"] is True
    assert _injections(harness.links["9004:a"]) == 2


@pytest.mark.asyncio
async def test_send_prefers_agent_panel_host(harness) -> None:
    harness.add("editor", score=5)
    harness.add("panel", has_agent_panel=True, score=1)
    await harness.pool.refresh(force=True)

    result = await harness.pool.send_prompt("do the thing", "Refactor")

    assert result.delivered
    assert result.count == 1
    assert harness.links["9004:editor"].sends() == []
    sends = harness.links["9004:panel"].sends()
    assert len(sends) == 1
    assert json.dumps("do the thing") in sends[0]
    assert json.dumps("Refactor") in sends[0]


@pytest.mark.asyncio
async def test_send_without_connections_is_unconfirmed(harness) -> None:
    result = await harness.pool.send_prompt("hi")
    assert result.reason == "no connections"
    assert not result.delivered


@pytest.mark.asyncio
async def test_send_without_input_is_unconfirmed(harness) -> None:
    harness.add("a", has_input=False)
    await harness.pool.refresh(force=True)

    result = await harness.pool.send_prompt("hi")
    assert result.reason == "no prompt input"
    assert harness.links["9004:a"].sends() == []


@pytest.mark.asyncio
async def test_remote_refusal_is_unconfirmed(harness) -> None:
    harness.add("a", send_ok=False)
    await harness.pool.refresh(force=True)

    result = await harness.pool.send_prompt("hi")
    assert result.status == SendStatus.UNCONFIRMED
    assert result.reason == "no send functions found"


@pytest.mark.asyncio
async def test_send_evaluation_error_is_protocol_error(harness) -> None:
    harness.add("a", send_raises=True)
    await harness.pool.refresh(force=True)

    result = await harness.pool.send_prompt("hi")
    assert result.status == SendStatus.PROTOCOL_ERROR


@pytest.mark.asyncio
async def test_stats_are_summed_across_connections(harness) -> None:
    harness.add("a", clicks=3)
    harness.add("b", clicks=4)
    await harness.pool.refresh(force=True)

    stats = await harness.pool.get_stats()
    assert stats.clicks == 7
    assert stats.blocked == 2
    assert stats.file_edits == 4

    reset = await harness.pool.reset_stats()
    assert reset.clicks == 7
    assert (await harness.pool.get_stats()).clicks == 0


@pytest.mark.asyncio
async def test_conversations_are_merged_in_order(harness) -> None:
    harness.add("a", tab_names=["Refactor", "Docs"])
    harness.add("b", tab_names=["Docs", "Tests"])
    await harness.pool.refresh(force=True)

    assert await harness.pool.get_conversations() == ["Refactor", "Docs", "Tests"]


@pytest.mark.asyncio
async def test_closed_link_leaves_the_map(harness) -> None:
    harness.add("a")
    await harness.pool.refresh(force=True)

    await harness.links["9004:a"].close()
    assert harness.pool.connection_count == 0

    # Rediscovered on the next refresh with a fresh link.
    await harness.pool.refresh(force=True)
    assert harness.pool.connection_count == 1


@pytest.mark.asyncio
async def test_stop_stops_remote_and_closes_links(harness) -> None:
    harness.add("a")
    await harness.pool.refresh(force=True)
    link = harness.links["9004:a"]

    await harness.pool.stop()

    assert harness.pool.connection_count == 0
    assert not link.is_open
    assert "if(window.__autoAcceptStop) window.__autoAcceptStop()" in link.evaluated


def _probe(cid: str, *, has_input=True, panel=False, score=1.0, title="") -> Probe:
    return Probe(ConnectionRecord(id=cid, link=None, title=title or cid), has_input, panel, score)


def test_rank_drops_connections_without_input() -> None:
    assert rank_candidates([_probe("a", has_input=False)]) == []


def test_rank_agent_panel_beats_score() -> None:
    ranked = rank_candidates([_probe("a", score=9), _probe("b", panel=True, score=1)])
    assert [p.record.id for p in ranked] == ["b"]


def test_rank_workspace_title_narrows_candidates() -> None:
    probes = [_probe("a", title="other - App", score=5), _probe("b", title="my-project - App", score=1)]
    ranked = rank_candidates(probes, "My-Project")
    assert [p.record.id for p in ranked] == ["b"]


def test_rank_without_workspace_match_keeps_all() -> None:
    probes = [_probe("a", score=1), _probe("b", score=3)]
    assert [p.record.id for p in rank_candidates(probes, "nowhere")] == ["b", "a"]


def test_rank_ties_break_by_id() -> None:
    probes = [_probe("z"), _probe("m"), _probe("a")]
    assert [p.record.id for p in rank_candidates(probes)] == ["a", "m", "z"]


@pytest.mark.asyncio
async def test_away_actions_and_focus_reach_every_connection(harness) -> None:
    a = harness.add("a", away_actions=2)
    b = harness.add("b", away_actions=3)
    await harness.pool.refresh(force=True)

    assert await harness.pool.get_away_actions() == 5

    await harness.pool.set_focus_state(True)
    assert a.focused is True and b.focused is True
    await harness.pool.set_focus_state(False)
    assert a.focused is False and b.focused is False
