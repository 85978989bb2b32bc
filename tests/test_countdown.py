"""
Unit tests for the Countdown state machine.

Everything here runs on a ManualScheduler, so timings are exact: a 100ms
countdown with a 5ms refresh ticks at t=5, 10, ... 95 and ends at t=100.
"""

import pytest


def make_countdown(scheduler, duration="100ms", refresh="5ms", ending="20ms", key="x", relay=None):
    from timedown.engine.countdown import Countdown
    return Countdown(key, duration, {'refresh': refresh, 'ending': ending},
                     scheduler=scheduler, relay=relay)


class TestCountdownCreation:
    """Test initial fields and option resolution."""

    def test_created_state(self, manual_scheduler):
        from timedown.engine.countdown import CountdownState

        countdown = make_countdown(manual_scheduler, duration="10s")
        assert countdown.key == "x"
        assert countdown.state is CountdownState.CREATED
        assert countdown.duration == 10000
        assert countdown.remaining_ms == 10000

    def test_options(self, manual_scheduler):
        countdown = make_countdown(manual_scheduler, duration="10s", ending="20ms", refresh="10ms")
        assert countdown.ending == 20
        assert countdown.refresh == 10
        assert countdown.options == {'refresh': "10ms", 'ending': "20ms"}

    def test_defaults(self, manual_scheduler):
        from timedown.engine.countdown import Countdown

        countdown = Countdown("d", "1s", scheduler=manual_scheduler)
        assert countdown.ending == 5000
        assert countdown.refresh == 10

    def test_unresolvable_values_fall_back(self, manual_scheduler):
        from timedown.engine.countdown import Countdown

        countdown = Countdown("bad", "whenever", {'ending': 'later', 'refresh': 'often'},
                              scheduler=manual_scheduler)
        assert countdown.duration == 0
        assert countdown.ending == 5000
        assert countdown.refresh == 10

    def test_zero_refresh_falls_back(self, manual_scheduler):
        countdown = make_countdown(manual_scheduler, refresh=0)
        assert countdown.refresh == 10

    def test_property_setters(self, manual_scheduler):
        countdown = make_countdown(manual_scheduler)

        countdown.duration = "2s"
        assert countdown.duration == 2000
        assert countdown.remaining_ms == 2000

        countdown.ending = "bogus"
        assert countdown.ending == 5000

        countdown.refresh = "25ms"
        assert countdown.refresh == 25
        assert countdown.options['refresh'] == 25

    def test_unknown_event_rejected(self, manual_scheduler):
        countdown = make_countdown(manual_scheduler)
        with pytest.raises(ValueError):
            countdown.on('finish', print)


class TestDurationChange:
    """Test setting the total duration outside CREATED."""

    def test_set_while_started_applies_after_end(self, manual_scheduler, event_log):
        countdown = make_countdown(manual_scheduler, duration=500, refresh=10)
        log = event_log(countdown)
        countdown.start()
        manual_scheduler.advance(20)

        countdown.duration = 50
        assert countdown.duration == 500

        manual_scheduler.advance(10)
        assert countdown.remaining_ms == 470
        assert countdown.remaining_ms <= countdown.duration

        manual_scheduler.run_until_idle()
        assert manual_scheduler.now() == 500.0
        assert log.of('end') == [{'remaining_ms': 0}]
        assert countdown.duration == 50
        assert countdown.remaining_ms == 50

    def test_set_while_stopped_applies_on_reset(self, manual_scheduler):
        from timedown.engine.countdown import CountdownState

        countdown = make_countdown(manual_scheduler, duration=500, refresh=10)
        countdown.start()
        manual_scheduler.advance(50)
        countdown.stop()

        countdown.duration = 100
        assert countdown.duration == 500
        assert countdown.remaining_ms == 450

        countdown.reset()
        assert countdown.state is CountdownState.CREATED
        assert countdown.duration == 100
        assert countdown.remaining_ms == 100

    def test_set_while_stopped_resume_keeps_total(self, manual_scheduler):
        countdown = make_countdown(manual_scheduler, duration=500, refresh=10)
        countdown.start()
        manual_scheduler.advance(50)
        countdown.stop()
        countdown.duration = 100

        countdown.start()
        manual_scheduler.advance(10)
        assert countdown.duration == 500
        assert countdown.remaining_ms == 440

    def test_explicit_reset_duration_wins(self, manual_scheduler):
        countdown = make_countdown(manual_scheduler, duration=500)
        countdown.start()
        countdown.duration = 100
        countdown.reset("2s")
        assert countdown.duration == 2000


class TestCountdownRun:
    """Test the tick loop from start to end."""

    def test_runs_to_completion(self, manual_scheduler, event_log):
        from timedown.engine.countdown import CountdownState

        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)
        end_times = []
        countdown.on('end', lambda data: end_times.append(manual_scheduler.now()))

        countdown.start()
        manual_scheduler.run_until_idle()

        ticks = [d['remaining_ms'] for d in log.of('tick')]
        assert ticks == list(range(95, 0, -5))
        assert log.of('start') == [{'remaining_ms': 100}]
        assert log.of('end') == [{'remaining_ms': 0}]
        assert end_times == [100.0]

        # Re-initialised silently after the end
        assert countdown.state is CountdownState.CREATED
        assert countdown.remaining_ms == 100
        assert 'reset' not in log.names()

    def test_event_order(self, manual_scheduler, event_log):
        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)

        countdown.start()
        manual_scheduler.run_until_idle()

        names = log.names()
        assert names[0] == 'start'
        assert names[-1] == 'end'
        assert names.count('ending') == 1
        assert names.index('ending') < names.index('end')
        # ending fires on the first tick below the threshold, before that tick
        assert log.of('ending') == [{'remaining_ms': 15}]
        assert names[names.index('ending') + 1] == 'tick'

    def test_tick_payload_matches_remaining(self, manual_scheduler):
        countdown = make_countdown(manual_scheduler, duration="10s")
        seen = []
        countdown.once('tick', lambda data: seen.append((data['remaining_ms'], countdown.remaining_ms)))

        countdown.start()
        manual_scheduler.advance(5)
        assert seen == [(9995, 9995)]

    def test_final_tick_lands_on_deadline(self, manual_scheduler, event_log):
        countdown = make_countdown(manual_scheduler, duration=100, refresh=30, ending=0)
        log = event_log(countdown)
        ended_at = []
        countdown.on('end', lambda data: ended_at.append(manual_scheduler.now()))

        countdown.start()
        manual_scheduler.run_until_idle()

        assert [d['remaining_ms'] for d in log.of('tick')] == [70, 40, 10]
        assert ended_at == [100.0]
        assert 'ending' not in log.names()

    def test_zero_duration_never_starts(self, manual_scheduler, event_log):
        from timedown.engine.countdown import Countdown, CountdownState

        for duration in (None, 0, "0ms", "garbage"):
            countdown = Countdown("z", duration, scheduler=manual_scheduler)
            log = event_log(countdown)
            countdown.start()

            assert countdown.state is CountdownState.CREATED
            assert log.events == []
            assert not manual_scheduler.pending("z")


class TestDriftCorrection:
    """Remaining time follows the clock, not the number of ticks."""

    def test_late_scheduler_does_not_accumulate_drift(self, event_log):
        from timedown.engine.countdown import Countdown
        from timedown.timing.scheduler import ManualScheduler

        scheduler = ManualScheduler(lag_ms=3)
        countdown = Countdown("lagged", 100, {'refresh': 10, 'ending': 0}, scheduler=scheduler)
        log = event_log(countdown)
        ended_at = []
        countdown.on('end', lambda data: ended_at.append(scheduler.now()))

        countdown.start()
        scheduler.run_until_idle()

        # Every wake-up is 3ms late, yet remaining tracks elapsed time exactly
        assert [d['remaining_ms'] for d in log.of('tick')] == [87, 74, 61, 48, 35, 22, 9]
        # A fixed 10ms decrement would have ended at t=130
        assert ended_at == [103.0]

    def test_lateness_statistics(self):
        from timedown.engine.countdown import Countdown
        from timedown.timing.scheduler import ManualScheduler

        scheduler = ManualScheduler(lag_ms=3)
        countdown = Countdown("lagged", 100, {'refresh': 10}, scheduler=scheduler)
        countdown.start()
        scheduler.run_until_idle()

        stats = countdown.stats.to_dict()
        assert stats['ticks'] == 8
        assert stats['lateness_mean_ms'] == pytest.approx(3.0)
        assert stats['lateness_std_ms'] == pytest.approx(0.0)
        assert stats['lateness_max_ms'] == pytest.approx(3.0)


class TestStartStop:
    """Test idempotence and pause/resume semantics."""

    def test_double_start_is_idempotent(self, manual_scheduler, event_log):
        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)

        countdown.start()
        countdown.start()

        assert log.names() == ['start']
        assert manual_scheduler.pending_count() == 1

    def test_start_from_start_handler(self, manual_scheduler, event_log):
        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)
        countdown.on('start', lambda data: countdown.start())

        countdown.start()
        countdown.start()
        manual_scheduler.run_until_idle()

        assert log.names().count('start') == 1
        assert log.names().count('end') == 1

    def test_stop_from_start_handler_leaves_no_loop(self, manual_scheduler):
        from timedown.engine.countdown import CountdownState

        countdown = make_countdown(manual_scheduler)
        countdown.on('start', lambda data: countdown.stop())
        countdown.start()

        assert countdown.state is CountdownState.STOPPED
        assert not manual_scheduler.pending("x")

    def test_stop_is_idempotent(self, manual_scheduler, event_log):
        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)

        def stop_again(data):
            countdown.stop()
            countdown.stop()

        countdown.on('stop', stop_again)
        countdown.start()
        manual_scheduler.advance(10)
        countdown.stop()

        assert log.names().count('stop') == 1

    def test_stop_when_not_started_is_noop(self, manual_scheduler, event_log):
        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)
        countdown.stop()
        assert log.events == []

    def test_pause_resume_counts_remaining_time(self, manual_scheduler, event_log):
        countdown = make_countdown(manual_scheduler, duration="500ms")
        log = event_log(countdown)
        ended_at = []
        countdown.on('end', lambda data: ended_at.append(manual_scheduler.now()))

        countdown.start()
        manual_scheduler.advance(52)
        countdown.stop()
        assert log.of('stop') == [{'remaining_ms': 448}]
        assert countdown.remaining_ms == 448

        manual_scheduler.advance(50)
        assert log.names()[-1] == 'stop'

        countdown.start()
        manual_scheduler.run_until_idle()

        assert log.of('start') == [{'remaining_ms': 500}, {'remaining_ms': 448}]
        # 500ms of running time plus the 50ms idle gap
        assert ended_at == [550.0]

    def test_idle_gap_is_excluded(self, manual_scheduler):
        countdown = make_countdown(manual_scheduler, duration=100, refresh=5)
        ended_at = []
        countdown.on('end', lambda data: ended_at.append(manual_scheduler.now()))

        countdown.start()
        manual_scheduler.advance(40)
        countdown.stop()
        manual_scheduler.advance(50)
        countdown.start()
        manual_scheduler.run_until_idle()

        assert ended_at[0] - 50 == pytest.approx(100.0)

    def test_stop_from_ending_handler(self, manual_scheduler, event_log):
        from timedown.engine.countdown import CountdownState

        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)
        countdown.on('ending', lambda data: countdown.stop())

        countdown.start()
        manual_scheduler.run_until_idle()

        assert countdown.state is CountdownState.STOPPED
        assert countdown.remaining_ms == 15
        # No stale tick after the stop
        assert log.names()[-2:] == ['ending', 'stop']

    def test_ending_rearms_after_stop_start(self, manual_scheduler, event_log):
        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)

        countdown.start()
        manual_scheduler.advance(90)
        countdown.stop()
        countdown.start()
        manual_scheduler.run_until_idle()

        assert log.of('ending') == [{'remaining_ms': 15}, {'remaining_ms': 5}]
        assert log.names().count('end') == 1


class TestEnd:
    """Test the end-of-cycle transition."""

    def test_start_inside_end_handler_is_ignored(self, manual_scheduler, event_log):
        from timedown.engine.countdown import CountdownState

        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)
        states = []

        def on_end(data):
            states.append((countdown.state, countdown.remaining_ms))
            countdown.start()
            countdown.start()
            countdown.stop()

        countdown.on('end', on_end)
        countdown.start()
        manual_scheduler.run_until_idle()

        assert states == [(CountdownState.ENDED, 0)]
        assert log.names().count('start') == 1
        assert 'stop' not in log.names()
        assert countdown.state is CountdownState.CREATED

    def test_restart_inside_end_handler(self, manual_scheduler, event_log):
        from timedown.engine.countdown import CountdownState

        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)
        ends = []

        def on_end(data):
            ends.append(manual_scheduler.now())
            if len(ends) == 1:
                countdown.restart()

        countdown.on('end', on_end)
        countdown.start()
        manual_scheduler.run_until_idle()

        assert ends == [100.0, 200.0]
        assert log.names().count('start') == 2
        assert countdown.state is CountdownState.CREATED


class TestReset:
    """Test reset and restart."""

    def test_reset_while_running(self, manual_scheduler, event_log):
        from timedown.engine.countdown import CountdownState

        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)

        countdown.start()
        manual_scheduler.advance(30)
        countdown.reset()

        assert countdown.state is CountdownState.CREATED
        assert countdown.remaining_ms == 100
        assert not manual_scheduler.pending("x")
        assert log.of('reset') == [{'remaining_ms': 100}]

        ticks_before = len(log.of('tick'))
        manual_scheduler.advance(200)
        assert len(log.of('tick')) == ticks_before

    def test_reset_changes_duration(self, manual_scheduler):
        countdown = make_countdown(manual_scheduler, duration="10s")
        countdown.reset("30s")
        assert countdown.duration == 30000
        assert countdown.remaining_ms == 30000

    def test_reset_merges_options(self, manual_scheduler):
        countdown = make_countdown(manual_scheduler)
        countdown.reset(options={'refresh': 7})
        assert countdown.refresh == 7
        assert countdown.ending == 20

    def test_silent_reset(self, manual_scheduler, event_log):
        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)
        countdown.reset(silent=True)
        assert log.events == []

    def test_reset_from_tick_handler(self, manual_scheduler, event_log):
        from timedown.engine.countdown import CountdownState

        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)
        observed = []

        def on_tick(data):
            countdown.reset()
            observed.append((countdown.state, countdown.remaining_ms))

        countdown.once('tick', on_tick)
        countdown.start()
        manual_scheduler.run_until_idle()

        assert observed == [(CountdownState.CREATED, 100)]
        assert log.names() == ['start', 'tick', 'reset']

    def test_restart(self, manual_scheduler, event_log):
        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)

        countdown.start()
        manual_scheduler.advance(40)
        countdown.restart()
        manual_scheduler.run_until_idle()

        assert log.names().count('start') == 2
        assert log.names().count('end') == 1
        assert 'reset' not in log.names()
        assert manual_scheduler.now() == 140.0

    def test_reset_and_start_repeatedly(self, manual_scheduler, event_log):
        countdown = make_countdown(manual_scheduler)
        log = event_log(countdown)

        countdown.start()
        countdown.reset()
        countdown.start()
        countdown.reset()
        countdown.start()
        manual_scheduler.run_until_idle()

        assert log.names().count('end') == 1
        assert manual_scheduler.pending_count() == 0


class TestDelete:
    """Test destruction."""

    def test_delete(self, manual_scheduler):
        from timedown.engine.countdown import CountdownState

        relayed = []
        countdown = make_countdown(manual_scheduler, relay=lambda e, c, d: relayed.append(e))
        for name in ('start', 'tick', 'stop', 'end'):
            countdown.on(name, lambda data: None)
        deleted = []
        countdown.on('delete', deleted.append)

        countdown.start()
        manual_scheduler.advance(10)
        countdown.delete()

        assert deleted == [{}]
        assert countdown.state is CountdownState.DESTROYED
        assert countdown.duration is None
        assert countdown.ending is None
        assert countdown.refresh is None
        assert countdown.remaining_ms is None
        assert countdown.listeners() == []
        assert not manual_scheduler.pending("x")

        # Everything afterwards is ignored
        countdown.start()
        countdown.stop()
        countdown.reset("5s")
        countdown.restart()
        countdown.delete()
        countdown.duration = "1s"
        manual_scheduler.advance(500)

        assert relayed.count('delete') == 1
        assert relayed[-1] == 'delete'
        assert countdown.state is CountdownState.DESTROYED
        assert countdown.duration is None

    def test_delete_from_tick_handler(self, manual_scheduler, event_log):
        from timedown.engine.countdown import CountdownState

        relayed = []
        countdown = make_countdown(manual_scheduler, relay=lambda e, c, d: relayed.append(e))
        countdown.once('tick', lambda data: countdown.delete())

        countdown.start()
        manual_scheduler.run_until_idle()

        assert countdown.state is CountdownState.DESTROYED
        assert relayed.count('delete') == 1
        assert 'tick' in relayed
        assert manual_scheduler.pending_count() == 0
