"""
Stage form widgets

Each widget owns its own state and hands out frozen snapshots, either on
request (`state`) or pushed through an optional `on_change` callback after
every change. Executors compose widgets; widgets never reach back into them.
"""
import logging
import threading
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.utils import timezone

from .display import round_half_up

logger = logging.getLogger(__name__)

ONE_MS = timedelta(milliseconds=1)


# ---------------------------------------------------------------------------
# Stopwatch
# ---------------------------------------------------------------------------

class TimerStateError(RuntimeError):
    """Raised on a stopwatch transition that is not allowed from the current status"""


IDLE = 'idle'
RUNNING = 'running'
PAUSED = 'paused'
STOPPED = 'stopped'


def format_elapsed(elapsed_ms):
    """Milliseconds as HH:MM:SS"""
    total_seconds = max(0, int(elapsed_ms)) // 1000
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


@dataclass(frozen=True)
class PauseInterval:
    paused_at: object
    resumed_at: Optional[object] = None

    @property
    def is_open(self):
        return self.resumed_at is None

    @property
    def duration_ms(self):
        if self.resumed_at is None:
            return None
        return (self.resumed_at - self.paused_at) // ONE_MS


@dataclass(frozen=True)
class TimerState:
    status: str = IDLE
    elapsed_ms: int = 0
    start_time: Optional[object] = None
    end_time: Optional[object] = None
    paused_duration: int = 0
    pause_history: tuple = ()

    @property
    def duration_minutes(self):
        return self.elapsed_ms // 60000

    @property
    def can_submit(self):
        return self.status == STOPPED and self.elapsed_ms > 0

    @property
    def display_time(self):
        return format_elapsed(self.elapsed_ms)

    def to_dict(self):
        return {
            'status': self.status,
            'elapsed_ms': self.elapsed_ms,
            'display_time': self.display_time,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'end_time': self.end_time.isoformat() if self.end_time else None,
            'paused_duration': self.paused_duration,
            'pause_history': [
                {
                    'paused_at': p.paused_at.isoformat(),
                    'resumed_at': p.resumed_at.isoformat() if p.resumed_at else None,
                }
                for p in self.pause_history
            ],
        }


class IntervalTicker:
    """Calls a function every `interval` seconds on a daemon thread until cancelled"""

    def __init__(self, interval=None):
        if interval is None:
            interval = settings.MANUFACTURING.get('STOPWATCH_TICK_SECONDS', 0.1)
        self.interval = interval
        self.thread = None
        self._stop_event = None

    @property
    def active(self):
        return self._stop_event is not None

    def start(self, callback):
        self.cancel()
        stop_event = threading.Event()
        self._stop_event = stop_event
        self.thread = threading.Thread(target=self._run, args=(callback, stop_event), daemon=True)
        self.thread.start()

    def _run(self, callback, stop_event):
        while not stop_event.wait(self.interval):
            try:
                callback()
            except Exception:
                logger.exception("Stopwatch tick failed; stopping ticker")
                stop_event.set()

    def cancel(self):
        """Stop ticking; the thread exits on its next wake-up, join `thread` to wait for it"""
        if self._stop_event is not None:
            self._stop_event.set()
            self._stop_event = None


class Stopwatch:
    """
    Stage timer: idle -> running -> (paused <-> running) -> stopped -> reset -> idle.

    Time comes from `clock` (default django.utils.timezone.now) so tests can
    drive it. While running, `ticker` (if given) calls `tick()` periodically;
    it is started on entering running and cancelled on every other transition
    and on close().

    Each pause is recorded as a PauseInterval that stays open until resume;
    paused_duration is the sum of the closed intervals in milliseconds.
    """

    def __init__(self, clock=None, ticker=None, allow_pause=True, on_change=None):
        self._clock = clock or timezone.now
        self._ticker = ticker
        self.allow_pause = allow_pause
        self.on_change = on_change
        self._lock = threading.RLock()
        self._state = TimerState()

    @classmethod
    def replay(cls, start_time, end_time, pauses=(), allow_pause=True):
        """
        Rebuild a stopped stopwatch from recorded timestamps.

        `pauses` is a sequence of (paused_at, resumed_at) pairs in order, all
        within [start_time, end_time].
        """
        if end_time < start_time:
            raise ValueError("Timer end time is before its start time")
        moments = [start_time]
        previous = start_time
        for paused_at, resumed_at in pauses:
            if not (previous <= paused_at <= resumed_at <= end_time):
                raise ValueError("Pause intervals must be ordered and inside the timed period")
            moments.extend([paused_at, resumed_at])
            previous = resumed_at
        moments.append(end_time)

        scripted = iter(moments)
        stopwatch = cls(clock=lambda: next(scripted), allow_pause=True)
        stopwatch.start()
        for _ in pauses:
            stopwatch.pause()
            stopwatch.resume()
        stopwatch.stop()
        stopwatch._clock = timezone.now
        stopwatch.allow_pause = allow_pause
        return stopwatch

    @property
    def state(self):
        return self._state

    @property
    def status(self):
        return self._state.status

    @property
    def elapsed_ms(self):
        return self._state.elapsed_ms

    @property
    def display_time(self):
        return self._state.display_time

    @property
    def can_submit(self):
        return self._state.can_submit

    def electricity_cost(self, cost_per_hour):
        """Cost in minor units of running `cost_per_hour` equipment for the elapsed time"""
        return round_half_up((cost_per_hour or 0) * self._state.elapsed_ms / 3_600_000)

    def _elapsed_at(self, now, paused_duration):
        return max(0, (now - self._state.start_time) // ONE_MS - paused_duration)

    def _transition(self, **changes):
        self._state = replace(self._state, **changes)
        return self._state

    def _emit(self, snapshot):
        if self.on_change is not None:
            self.on_change(snapshot)

    def _start_ticker(self):
        if self._ticker is not None:
            self._ticker.start(self.tick)

    def _stop_ticker(self):
        if self._ticker is not None:
            self._ticker.cancel()

    def start(self):
        """Start from idle; from paused this resumes"""
        with self._lock:
            status = self._state.status
            if status == PAUSED:
                snapshot = self._resume_locked()
            elif status == IDLE:
                snapshot = self._transition(status=RUNNING, start_time=self._clock(), elapsed_ms=0)
                self._start_ticker()
            else:
                raise TimerStateError(f"Cannot start a {status} timer")
        self._emit(snapshot)
        return snapshot

    def pause(self):
        with self._lock:
            if self._state.status != RUNNING:
                raise TimerStateError(f"Cannot pause a {self._state.status} timer")
            if not self.allow_pause:
                raise TimerStateError("Pausing is disabled for this timer")
            now = self._clock()
            snapshot = self._transition(
                status=PAUSED,
                elapsed_ms=self._elapsed_at(now, self._state.paused_duration),
                pause_history=self._state.pause_history + (PauseInterval(paused_at=now),),
            )
            self._stop_ticker()
        self._emit(snapshot)
        return snapshot

    def resume(self):
        with self._lock:
            if self._state.status != PAUSED:
                raise TimerStateError(f"Cannot resume a {self._state.status} timer")
            snapshot = self._resume_locked()
        self._emit(snapshot)
        return snapshot

    def _resume_locked(self):
        now = self._clock()
        history, paused_duration = self._close_open_pause(now)
        snapshot = self._transition(
            status=RUNNING,
            pause_history=history,
            paused_duration=paused_duration,
            elapsed_ms=self._elapsed_at(now, paused_duration),
        )
        self._start_ticker()
        return snapshot

    def _close_open_pause(self, now):
        history = self._state.pause_history
        paused_duration = self._state.paused_duration
        if history and history[-1].is_open:
            closed = replace(history[-1], resumed_at=now)
            history = history[:-1] + (closed,)
            paused_duration += closed.duration_ms
        return history, paused_duration

    def toggle_pause(self):
        if self._state.status == RUNNING:
            return self.pause()
        if self._state.status == PAUSED:
            return self.resume()
        raise TimerStateError(f"Cannot toggle pause on a {self._state.status} timer")

    def stop(self):
        """Stop from running or paused; end_time is set exactly once"""
        with self._lock:
            if self._state.status not in (RUNNING, PAUSED):
                raise TimerStateError(f"Cannot stop a {self._state.status} timer")
            now = self._clock()
            history, paused_duration = self._close_open_pause(now)
            snapshot = self._transition(
                status=STOPPED,
                end_time=now,
                pause_history=history,
                paused_duration=paused_duration,
                elapsed_ms=self._elapsed_at(now, paused_duration),
            )
            self._stop_ticker()
        self._emit(snapshot)
        return snapshot

    def reset(self):
        with self._lock:
            if self._state.status == IDLE:
                raise TimerStateError("Timer is already idle")
            self._stop_ticker()
            self._state = snapshot = TimerState()
        self._emit(snapshot)
        return snapshot

    def tick(self):
        """Refresh elapsed_ms from the clock; no-op unless running"""
        with self._lock:
            if self._state.status != RUNNING:
                return self._state
            snapshot = self._transition(
                elapsed_ms=self._elapsed_at(self._clock(), self._state.paused_duration),
            )
        self._emit(snapshot)
        return snapshot

    def close(self):
        self._stop_ticker()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False


# ---------------------------------------------------------------------------
# Waste scale
# ---------------------------------------------------------------------------

WASTE_REASONS = [
    ('contamination', 'Contamination'),
    ('spoilage', 'Spoilage'),
    ('damage', 'Physical Damage'),
    ('trimming', 'Trimming Loss'),
    ('spillage', 'Spillage'),
    ('other', 'Other'),
]

WASTE_REASON_CODES = frozenset(code for code, _ in WASTE_REASONS)


@dataclass(frozen=True)
class WasteStatus:
    status: str
    message: str


def waste_status(waste_percent, expected_waste_percent=None):
    """Band a waste percentage against the expected waste for the stage"""
    if waste_percent == 0:
        return WasteStatus('excellent', 'No waste recorded')

    if expected_waste_percent is not None:
        if waste_percent <= expected_waste_percent:
            return WasteStatus('excellent', 'Within expected range')
        if waste_percent <= expected_waste_percent + 5:
            return WasteStatus('normal', f'Slightly above expected ({expected_waste_percent}%)')
        if waste_percent <= expected_waste_percent + 10:
            return WasteStatus('acceptable', 'Above expected range')
        return WasteStatus('high', 'Significantly above expected')

    if waste_percent < 10:
        return WasteStatus('excellent', 'Low waste')
    if waste_percent < 15:
        return WasteStatus('acceptable', 'Acceptable waste')
    return WasteStatus('high', 'High waste - investigate')


@dataclass(frozen=True)
class WasteState:
    input_qty: float
    waste_qty: float
    output_qty: float
    waste_percent: float
    waste_reasons: tuple = ()


class WasteScale:
    """Records waste against a fixed input quantity; output is derived"""

    def __init__(self, input_qty=0, expected_waste_percent=None, on_change=None):
        self.input_qty = max(0, input_qty or 0)
        self.expected_waste_percent = expected_waste_percent
        self.on_change = on_change
        self.waste_qty = 0
        self.waste_reasons = ()

    @property
    def output_qty(self):
        return max(0, self.input_qty - self.waste_qty)

    @property
    def waste_percent(self):
        if self.input_qty <= 0:
            return 0
        return self.waste_qty / self.input_qty * 100

    @property
    def status(self):
        return waste_status(self.waste_percent, self.expected_waste_percent)

    @property
    def state(self):
        return WasteState(
            input_qty=self.input_qty,
            waste_qty=self.waste_qty,
            output_qty=self.output_qty,
            waste_percent=self.waste_percent,
            waste_reasons=self.waste_reasons,
        )

    def _emit(self):
        if self.on_change is not None:
            self.on_change(self.state)

    def set_input_qty(self, value):
        self.input_qty = max(0, value or 0)
        self.waste_qty = min(self.waste_qty, self.input_qty)
        self._emit()

    def set_waste_qty(self, value):
        """Waste is clamped to [0, input_qty]"""
        self.waste_qty = min(max(0, value or 0), self.input_qty)
        self._emit()

    def toggle_reason(self, code):
        if code not in WASTE_REASON_CODES:
            raise ValueError(f"Unknown waste reason: {code}")
        if code in self.waste_reasons:
            self.waste_reasons = tuple(r for r in self.waste_reasons if r != code)
        else:
            self.waste_reasons = self.waste_reasons + (code,)
        self._emit()

    def set_reasons(self, codes):
        unknown = [c for c in codes if c not in WASTE_REASON_CODES]
        if unknown:
            raise ValueError(f"Unknown waste reason(s): {', '.join(unknown)}")
        self.waste_reasons = tuple(dict.fromkeys(codes))
        self._emit()


# ---------------------------------------------------------------------------
# Batch quality
# ---------------------------------------------------------------------------

VISUAL_QUALITY_CHOICES = [
    ('excellent', 'Perfect color, uniform texture, no defects'),
    ('good', 'Good color consistency, minor variations acceptable'),
    ('fair', 'Acceptable but with noticeable color variations'),
    ('poor', 'Significant quality issues, inconsistent texture or color'),
]

_VISUAL_SCORES = {'excellent': 3, 'good': 2, 'fair': 1, 'poor': 0}


@dataclass(frozen=True)
class QualityMetrics:
    moisture_content: Optional[float] = None
    visual_quality: Optional[str] = None
    color_consistency: Optional[int] = None
    texture_score: Optional[int] = None
    notes: str = ''

    @property
    def has_data(self):
        return self.moisture_content is not None or self.visual_quality is not None

    def to_dict(self):
        data = {
            'moisture_content': self.moisture_content,
            'visual_quality': self.visual_quality,
            'color_consistency': self.color_consistency,
            'texture_score': self.texture_score,
            'notes': self.notes or None,
        }
        return {key: value for key, value in data.items() if value is not None}


def moisture_status(moisture_content):
    if moisture_content is None:
        return 'not_measured'
    if moisture_content < 5:
        return 'within_target'
    if moisture_content < 7:
        return 'slightly_high'
    return 'outside_spec'


class BatchQuality:
    """Optional batch quality metrics for dried product; every field validated on entry"""

    def __init__(self, initial=None, on_change=None):
        self.on_change = on_change
        self.metrics = QualityMetrics()
        if initial:
            self.update(**initial)

    def update(self, **values):
        moisture = values.get('moisture_content', self.metrics.moisture_content)
        if moisture is not None and not 0 <= moisture <= 100:
            raise ValueError("Moisture content must be between 0 and 100%")
        visual = values.get('visual_quality', self.metrics.visual_quality)
        if visual is not None and visual not in _VISUAL_SCORES:
            raise ValueError(f"Unknown visual quality: {visual}")
        for name in ('color_consistency', 'texture_score'):
            score = values.get(name, getattr(self.metrics, name))
            if score is not None and score not in range(1, 6):
                raise ValueError(f"{name.replace('_', ' ').capitalize()} must be between 1 and 5")

        self.metrics = replace(self.metrics, **values)
        if self.on_change is not None:
            self.on_change(self.metrics)
        return self.metrics

    def moisture_status(self):
        return moisture_status(self.metrics.moisture_content)

    def quality_score(self):
        m = self.metrics
        score = 0
        if m.moisture_content is not None:
            score += {'within_target': 3, 'slightly_high': 2}.get(self.moisture_status(), 1)
        score += _VISUAL_SCORES.get(m.visual_quality, 0)
        score += m.color_consistency or 0
        score += m.texture_score or 0
        return score

    def overall_rating(self):
        """excellent / good / review, or None when nothing was measured"""
        if not self.metrics.has_data:
            return None
        score = self.quality_score()
        if score >= 8:
            return 'excellent'
        if score >= 5:
            return 'good'
        return 'review'


# ---------------------------------------------------------------------------
# Operator and equipment selection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OperatorSelection:
    id: Optional[int] = None
    name: str = ''


class OperatorSelector:
    def __init__(self, on_change=None):
        self.on_change = on_change
        self.selection = OperatorSelection()

    @property
    def operator_id(self):
        return self.selection.id

    @property
    def operator_name(self):
        return self.selection.name

    def select(self, operator_id, name=''):
        self.selection = OperatorSelection(id=operator_id, name=name or '')
        if self.on_change is not None:
            self.on_change(self.selection)

    def clear(self):
        self.select(None)


def capacity_utilization(unit, input_batch_size):
    """Batch size as a percentage of the unit's chamber capacity, or None"""
    capacity = unit.get('chamber_capacity')
    if not capacity or not input_batch_size:
        return None
    return float(input_batch_size) / float(capacity) * 100


class EquipmentUnitSelector:
    """
    Lists the active units of a work center through `loader` and lets the
    operator pick one. `loader(work_center_id)` returns the usual
    {'success': bool, 'units': [...], 'error': str} envelope.
    """

    def __init__(self, work_center_id=None, loader=None, input_batch_size=None, on_change=None):
        self.work_center_id = work_center_id
        self.loader = loader
        self.input_batch_size = input_batch_size
        self.on_change = on_change
        self.units = []
        self.loaded = False
        self.error = None
        self.selected_unit_id = None

    def load(self):
        if self.loader is None or self.work_center_id is None:
            return self.units
        result = self.loader(self.work_center_id)
        if result.get('success'):
            self.units = list(result.get('units') or [])
            self.error = None
        else:
            self.units = []
            self.error = result.get('error') or 'Failed to load equipment units'
            logger.warning(f"Equipment units for work center {self.work_center_id} unavailable: {self.error}")
        self.loaded = True
        return self.units

    @property
    def selected_unit(self):
        for unit in self.units:
            if unit.get('id') == self.selected_unit_id:
                return unit
        return None

    def select(self, unit_id):
        """Pick a unit; once units are loaded only listed units are accepted"""
        if unit_id is not None and self.loaded and not any(u.get('id') == unit_id for u in self.units):
            raise ValueError(f"Equipment unit {unit_id} is not available for this work center")
        self.selected_unit_id = unit_id
        if self.on_change is not None:
            self.on_change(unit_id)

    def capacity_utilization(self, unit=None):
        unit = unit or self.selected_unit
        if unit is None:
            return None
        return capacity_utilization(unit, self.input_batch_size)


# ---------------------------------------------------------------------------
# Materials
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MaterialLine:
    id: object
    name: str
    qty: float
    unit_cost: float = 0
    # Expected quantity from the bill of materials, when known
    standard_qty: Optional[float] = None

    @property
    def variance(self):
        if self.standard_qty is None:
            return None
        return self.qty - self.standard_qty

    @property
    def variance_percent(self):
        if not self.standard_qty:
            return None
        return self.variance / self.standard_qty * 100

    @property
    def variance_band(self):
        """ok within 5%, warning within 10%, else high"""
        percent = self.variance_percent
        if percent is None:
            return None
        if abs(percent) <= 5:
            return 'ok'
        if abs(percent) <= 10:
            return 'warning'
        return 'high'

    def to_dict(self):
        data = {'id': self.id, 'name': self.name, 'qty': self.qty, 'unit_cost': self.unit_cost}
        if self.standard_qty is not None:
            data.update(standard_qty=self.standard_qty, variance=self.variance, variance_percent=self.variance_percent)
        return data


class MaterialsWidget:
    def __init__(self, on_change=None):
        self.on_change = on_change
        self.lines = ()

    def _emit(self):
        if self.on_change is not None:
            self.on_change(self.lines)

    def _index(self, material_id):
        for index, line in enumerate(self.lines):
            if line.id == material_id:
                return index
        return None

    def add_material(self, material_id, name, qty, unit_cost=0, standard_qty=None):
        if qty < 0:
            raise ValueError("Material quantity cannot be negative")
        line = MaterialLine(id=material_id, name=name, qty=qty, unit_cost=unit_cost, standard_qty=standard_qty)
        index = self._index(material_id)
        if index is None:
            self.lines = self.lines + (line,)
        else:
            self.lines = self.lines[:index] + (line,) + self.lines[index + 1:]
        self._emit()
        return line

    def add_bom_item(self, item, input_qty):
        """Add a bill-of-materials line; actual qty starts at the standard qty"""
        standard_qty = item['standard_qty_per_unit'] * input_qty
        return self.add_material(
            item['id'], item['name'], standard_qty,
            unit_cost=item.get('unit_cost', 0), standard_qty=standard_qty,
        )

    def update_qty(self, material_id, qty):
        index = self._index(material_id)
        if index is None:
            raise KeyError(material_id)
        if qty < 0:
            raise ValueError("Material quantity cannot be negative")
        self.lines = self.lines[:index] + (replace(self.lines[index], qty=qty),) + self.lines[index + 1:]
        self._emit()

    def remove(self, material_id):
        self.lines = tuple(line for line in self.lines if line.id != material_id)
        self._emit()

    @property
    def total_cost(self):
        return sum(line.qty * line.unit_cost for line in self.lines)
