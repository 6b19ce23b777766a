from cpr.polling import Deadline, PollOutcome, PollResult, poll_until


def _scripted(outcomes, clock, calls):
    it = iter(outcomes)

    def probe():
        calls.append(clock())
        return next(it, outcomes[-1])

    return probe


def test_transient_failures_do_not_end_the_wait(clock):
    calls = []
    probe = _scripted(
        [PollOutcome.PROBE_FAILED, PollOutcome.PROBE_FAILED, PollOutcome.NOT_YET_MATCHED, PollOutcome.PROBE_FAILED, PollOutcome.MATCHED],
        clock,
        calls,
    )
    deadline = Deadline.after(100, clock=clock)

    result = poll_until(deadline, 10, probe, progress=None, sleep=clock.sleep)

    assert result is PollResult.SUCCESS
    assert len(calls) == 5
    assert clock.sleeps == [10, 10, 10, 10]


def test_times_out_without_probing_past_the_deadline(clock):
    calls = []
    probe = _scripted([PollOutcome.NOT_YET_MATCHED], clock, calls)
    deadline = Deadline.after(30, clock=clock)

    result = poll_until(deadline, 10, probe, progress=None, sleep=clock.sleep)

    assert result is PollResult.TIMED_OUT
    assert calls == [1000.0, 1010.0, 1020.0]
    assert all(t < deadline.at for t in calls)


def test_last_sleep_is_clipped_to_the_deadline(clock):
    calls = []
    probe = _scripted([PollOutcome.PROBE_FAILED], clock, calls)
    deadline = Deadline.after(25, clock=clock)

    assert poll_until(deadline, 10, probe, progress=None, sleep=clock.sleep) is PollResult.TIMED_OUT
    assert clock.sleeps == [10, 10, 5]
    assert clock.now == deadline.at


def test_progress_is_reported_for_every_unmatched_iteration(clock):
    seen = []
    outcomes = [PollOutcome.NOT_YET_MATCHED, PollOutcome.PROBE_FAILED, PollOutcome.MATCHED]
    probe = _scripted(outcomes, clock, [])

    poll_until(Deadline.after(60, clock=clock), 10, probe, progress=seen.append, sleep=clock.sleep)

    assert seen == [PollOutcome.NOT_YET_MATCHED, PollOutcome.PROBE_FAILED]


def test_zero_timeout_never_checks(clock):
    calls = []
    probe = _scripted([PollOutcome.MATCHED], clock, calls)

    result = poll_until(Deadline.after(0, clock=clock), 10, probe, progress=None, sleep=clock.sleep)

    assert result is PollResult.TIMED_OUT
    assert calls == []


def test_deadline_is_fixed_at_creation(clock):
    deadline = Deadline.after(50, clock=clock)
    clock.sleep(20)
    assert deadline.at == 1050.0
    assert deadline.remaining() == 30.0
    assert not deadline.expired()
    clock.sleep(30)
    assert deadline.expired()
    assert deadline.remaining() == 0.0
