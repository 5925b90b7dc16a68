"""Formatting and status helpers shared by the executors, views and commands"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings


@dataclass(frozen=True)
class YieldStatus:
    status: str
    message: str


YIELD_BANDS = [
    (98, 'excellent', 'Excellent yield - outstanding efficiency'),
    (95, 'good', 'Good yield - above target'),
    (85, 'acceptable', 'Normal yield - within acceptable range'),
    (70, 'low', 'Low yield - below target, review quality'),
]


def yield_status(yield_percent, expected_yield=None):
    """
    Band a yield percentage.

    With an expected yield the yield is first taken relative to it, so a
    freeze-dryer returning 10% against an expected 10% rates excellent.
    """
    score = yield_percent
    if expected_yield:
        score = yield_percent / expected_yield * 100
    for threshold, status, message in YIELD_BANDS:
        if score >= threshold:
            return YieldStatus(status, message)
    return YieldStatus('critical', 'Critical yield - investigate immediately')


def round_half_up(value):
    """Nearest whole number with halves rounded up: 2.5 -> 3, not banker's rounding"""
    return int(Decimal(str(value or 0)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def format_duration(minutes):
    """Whole minutes as '2h 05m' or '45m'"""
    minutes = int(minutes or 0)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes:02d}m"
    return f"{minutes}m"


def format_currency(amount_minor, currency=None):
    """Minor currency units (e.g. tiyin) as a major-unit string: 123450 -> '1,234.50 UZS'"""
    config = settings.MANUFACTURING
    minor_units = config.get('CURRENCY_MINOR_UNITS', 100)
    currency = currency or config.get('CURRENCY_CODE', '')
    amount = Decimal(int(amount_minor or 0)) / Decimal(minor_units)
    return f"{amount:,.2f} {currency}".strip()


def step_status(index, current_index):
    if index < current_index:
        return 'completed'
    if index == current_index:
        return 'in_progress'
    return 'pending'


def traveler_steps(steps, current_index, statuses=None):
    """
    Route card rows for a work order.

    A status recorded in `statuses` (step id -> status) wins, except that the
    current step shows as in progress while still pending. Steps without a
    recorded status follow their position relative to the current step.
    """
    statuses = statuses or {}
    rows = []
    for index, step in enumerate(steps):
        recorded = statuses.get(step['id'])
        if recorded == 'pending' and index == current_index:
            recorded = 'in_progress'
        rows.append({
            'id': step['id'],
            'step_order': step.get('step_order', index + 1),
            'name': step.get('name', ''),
            'work_center': (step.get('work_center') or {}).get('name', ''),
            'status': recorded or step_status(index, current_index),
            'is_current': index == current_index,
        })
    return rows


def traveler_progress(rows):
    total = len(rows)
    completed = sum(1 for row in rows if row['status'] == 'completed')
    return {
        'completed': completed,
        'total': total,
        'percent': completed / total * 100 if total else 0,
    }
