import unittest

from sitemigrate.services.migration.phases import (
    EXPORT_TRANSITIONS,
    RESTORE_TRANSITIONS,
    ExportPhase,
    PhaseOutcome,
    RestorePhase,
    SliceClock,
    interpolate,
    next_phase,
)
from sitemigrate.tests._util_site import StepClock


class TestPhasesUnit(unittest.TestCase):
    def test_export_walks_phases_in_order(self):
        phase = ExportPhase.CONFIG
        seen = [phase]
        while phase is not ExportPhase.COMPLETE:
            phase = next_phase(EXPORT_TRANSITIONS, phase, PhaseOutcome.DONE)
            seen.append(phase)
        self.assertEqual([p.value for p in seen], ["config", "database", "enumerate", "archive", "finalize", "complete"])

    def test_pending_stays_and_skipped_advances(self):
        self.assertIs(next_phase(EXPORT_TRANSITIONS, ExportPhase.DATABASE, PhaseOutcome.PENDING), ExportPhase.DATABASE)
        self.assertIs(next_phase(EXPORT_TRANSITIONS, ExportPhase.DATABASE, PhaseOutcome.SKIPPED), ExportPhase.ENUMERATE)
        self.assertIs(next_phase(RESTORE_TRANSITIONS, RestorePhase.DATABASE, PhaseOutcome.SKIPPED), RestorePhase.FILES)
        self.assertIs(next_phase(RESTORE_TRANSITIONS, RestorePhase.FILES, PhaseOutcome.PENDING), RestorePhase.FILES)

    def test_unknown_transition_raises(self):
        with self.assertRaises(ValueError):
            next_phase(EXPORT_TRANSITIONS, ExportPhase.CONFIG, PhaseOutcome.PENDING)
        with self.assertRaises(ValueError):
            next_phase(RESTORE_TRANSITIONS, RestorePhase.COMPLETE, PhaseOutcome.DONE)

    def test_interpolate(self):
        self.assertEqual(interpolate(35, 95, 0, 0), 35)
        self.assertEqual(interpolate(35, 95, 5, 10), 65)
        self.assertEqual(interpolate(35, 95, 20, 10), 95)


class TestSliceClockUnit(unittest.TestCase):
    def test_never_yields_before_first_unit(self):
        clock = SliceClock(0.0, clock=StepClock(10.0))
        self.assertTrue(clock.expired())
        self.assertFalse(clock.should_yield())
        clock.tick()
        self.assertTrue(clock.should_yield())

    def test_within_budget_keeps_going(self):
        clock = SliceClock(100.0, clock=StepClock(1.0))
        clock.tick(3)
        self.assertEqual(clock.units, 3)
        self.assertFalse(clock.should_yield())
