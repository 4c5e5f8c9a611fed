"""Tests for the simulated speed test sequence."""
import asyncio

import pytest

from conftest import FailingRepository, FakeClock, FakeProbe, ipapi_transport
from netpulse.db import get_db
from netpulse.models import IpInfo, TestPhase
from netpulse.services import GeolocationService, SpeedTestSequence, build_result

# Delays with rng draws 0.0, 0.5, 1.0, 0.25, 0.75: 0.4, 0.6, 0.8, 0.5, 0.7 seconds
DRAWS = [0.0, 0.5, 1.0, 0.25, 0.75]
EXPECTED_RATES = [1 * 8 / 0.4, 2 * 8 / 0.6, 4 * 8 / 0.8, 8 * 8 / 0.5, 16 * 8 / 0.7]


def make_sequence(repository, clock=None, probe=None, geolocation=None, draws=None):
    clock = clock or FakeClock()
    values = iter(draws or DRAWS)
    return SpeedTestSequence(
        probe=probe or FakeProbe(42),
        geolocation=geolocation or GeolocationService(transport=ipapi_transport()),
        repository=repository,
        sleep=clock.sleep,
        clock=clock,
        rng=lambda: next(values),
    )


class TestBuildResult:
    def test_uses_ip_info(self):
        info = IpInfo(ip="203.0.113.7", city="Porto", region="Norte", org="Example Telecom")
        result = build_result(25, 180.0, info)

        assert result.isp == "Example Telecom"
        assert result.ip == "203.0.113.7"
        assert result.location == "Porto, Norte"

    def test_without_ip_info(self):
        result = build_result(25, 180.0, None)

        assert result.isp == "Unknown"
        assert result.ip == "0.0.0.0"
        assert result.location == "Unknown, "

    def test_partial_ip_info(self):
        result = build_result(25, 180.0, IpInfo(city="Porto"))

        assert result.isp == "Unknown"
        assert result.ip == "0.0.0.0"
        assert result.location == "Porto, "


class TestSpeedTestSequence:
    def test_step_rates_and_cumulative_average(self, repository):
        sequence = make_sequence(repository)
        outcome = asyncio.run(sequence.run())

        assert outcome.status == "completed"
        assert len(outcome.steps) == 5
        running_sum = 0.0
        for n, (step, expected) in enumerate(zip(outcome.steps, EXPECTED_RATES), start=1):
            running_sum += step.rate_mbps
            assert step.rate_mbps == pytest.approx(expected)
            assert step.cumulative_average_mbps == pytest.approx(running_sum / n)

    def test_final_speed_is_rounded_average(self, repository):
        sequence = make_sequence(repository)
        outcome = asyncio.run(sequence.run())

        assert outcome.result.download_speed == round(sum(EXPECTED_RATES) / 5)
        assert outcome.result.latency == 42

    def test_snapshot_after_completion(self, repository):
        sequence = make_sequence(repository)
        asyncio.run(sequence.run())
        snapshot = sequence.get_snapshot()

        assert snapshot.phase == TestPhase.COMPLETED
        assert snapshot.progress == pytest.approx(100.0)
        assert snapshot.step == snapshot.total_steps == 5
        assert snapshot.latency == 42
        assert not snapshot.running
        assert snapshot.completed_at is not None

    def test_progress_during_run(self, repository):
        seen = []
        clock = FakeClock()
        holder = {}

        async def recording_sleep(seconds):
            snapshot = holder["sequence"].get_snapshot()
            seen.append((snapshot.phase, snapshot.progress, snapshot.download_speed))
            await clock.sleep(seconds)

        sequence = make_sequence(repository, clock=clock)
        sequence._sleep = recording_sleep
        holder["sequence"] = sequence
        asyncio.run(sequence.run())

        phases = {phase for phase, _, _ in seen}
        assert phases == {TestPhase.DOWNLOADING}
        progresses = [progress for _, progress, _ in seen]
        assert progresses == pytest.approx([30.0, 44.0, 58.0, 72.0, 86.0])
        # First step has no speed yet; afterwards the rounded running average
        assert seen[0][2] is None
        assert seen[1][2] == round(EXPECTED_RATES[0])
        assert seen[2][2] == round(sum(EXPECTED_RATES[:2]) / 2)

    def test_persists_result_with_ip_info(self, repository):
        geolocation = GeolocationService(transport=ipapi_transport())
        sequence = make_sequence(repository, geolocation=geolocation)

        async def run():
            await geolocation.lookup()
            outcome = await sequence.run()
            return outcome, await repository.get_recent()

        outcome, rows = asyncio.run(run())

        assert outcome.persisted
        assert len(rows) == 1
        assert rows[0]["id"] == outcome.result.id
        assert rows[0]["latency"] == 42
        assert rows[0]["download_speed"] == outcome.result.download_speed
        assert rows[0]["isp"] == "Example Telecom"
        assert rows[0]["ip"] == "203.0.113.7"
        assert rows[0]["location"] == "Lisbon, Lisbon"

    def test_persists_fallbacks_without_lookup(self, repository):
        sequence = make_sequence(repository)
        asyncio.run(sequence.run())
        row = asyncio.run(repository.get_recent())[0]

        assert row["isp"] == "Unknown"
        assert row["ip"] == "0.0.0.0"
        assert row["location"] == "Unknown, "

    def test_save_failure_is_ignored(self, settings_env):
        sequence = make_sequence(FailingRepository(get_db()))
        outcome = asyncio.run(sequence.run())

        assert outcome.status == "completed"
        assert not outcome.persisted
        assert sequence.get_stats()["save_failures"] == 1
        assert not sequence.is_running

    def test_second_run_is_busy(self, repository):
        sequence = make_sequence(repository)

        async def run():
            return await asyncio.gather(sequence.run(), sequence.run())

        first, second = asyncio.run(run())

        assert first.status == "completed"
        assert second.status == "busy"
        assert sequence.get_stats()["busy_rejections"] == 1
        assert asyncio.run(repository.count()) == 1

    def test_start_rejects_while_running(self, repository):
        sequence = make_sequence(repository)

        async def run():
            first = sequence.start()
            second = sequence.start()
            outcome = await sequence.wait()
            return first, second, outcome

        first, second, outcome = asyncio.run(run())

        assert first is not None
        assert second is None
        assert outcome.status == "completed"

    def test_runs_again_after_completion(self, repository):
        sequence = make_sequence(repository, draws=DRAWS * 2)

        async def run():
            await sequence.run()
            return await sequence.run()

        outcome = asyncio.run(run())

        assert outcome.status == "completed"
        assert sequence.get_stats()["runs_completed"] == 2

    def test_callbacks_receive_outcome(self, repository):
        received = []
        sequence = make_sequence(repository)
        sequence.on_complete(received.append)

        outcome = asyncio.run(sequence.run())

        assert received == [outcome]
