"""
Stage configuration registry

Each production stage type (SUBLIMATION, MIXING, ...) is described by a
StageConfiguration: which input widgets the operator fills in, the validation
rules the form must pass, the expected yield band and the cost formula.
GenericStageExecutor interprets these descriptors, so adding a stage type means
adding one configuration here and nothing in the consumers.

Configurations are immutable and the registry is built once at startup
(see ManufacturingConfig.ready) and only read afterwards.
"""
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Optional

from django.apps import apps

from .display import round_half_up

WIDGET_TYPES = (
    'operator',
    'equipment_unit',
    'stopwatch',
    'output',
    'materials',
    'waste',
    'batch_quality',
)

RULE_TYPES = ('required', 'range', 'timer_status', 'yield_range', 'custom')

COST_TYPES = ('electricity', 'labor', 'materials', 'custom')


@dataclass(frozen=True)
class StageWidget:
    """One input control shown on the stage form"""
    type: str
    required: bool = False
    config: Mapping = field(default_factory=dict)

    def __post_init__(self):
        if self.type not in WIDGET_TYPES:
            raise ValueError(f"Unknown widget type: {self.type}")
        object.__setattr__(self, 'config', MappingProxyType(dict(self.config)))


@dataclass(frozen=True)
class ValidationRule:
    """
    A single form rule.

    `field` names a key of the executor's form snapshot (operator, equipment,
    output_qty, timer, yield, materials, waste_qty, ...). `custom_validator`
    is called as custom_validator(value, snapshot) and must return a bool.
    """
    field: str
    type: str
    error_message: str
    min: Optional[float] = None
    max: Optional[float] = None
    custom_validator: Optional[Callable[[Any, Mapping], bool]] = None

    def __post_init__(self):
        if self.type not in RULE_TYPES:
            raise ValueError(f"Unknown validation rule type: {self.type}")


@dataclass(frozen=True)
class CostContext:
    """Inputs available to a cost formula"""
    duration_minutes: int = 0
    hourly_rate: int = 0
    output_qty: float = 0
    materials: tuple = ()


@dataclass(frozen=True)
class CostCalculation:
    type: str
    formula: Optional[Callable[[CostContext], int]] = None

    def __post_init__(self):
        if self.type not in COST_TYPES:
            raise ValueError(f"Unknown cost calculation type: {self.type}")


@dataclass(frozen=True)
class StageConfiguration:
    stage_type: str
    display_name: str
    icon: str
    description: str
    widgets: tuple
    validations: tuple
    cost_calculation: CostCalculation
    # Percentages: expected yield 10 with tolerance 30 means 7-13%
    expected_yield: Optional[float] = None
    yield_tolerance: Optional[float] = None
    expected_waste_percent: Optional[float] = None
    input_label: str = 'Input'
    output_label: str = 'Output'
    input_unit: str = 'kg'
    output_unit: str = 'kg'

    def __post_init__(self):
        object.__setattr__(self, 'widgets', tuple(self.widgets))
        object.__setattr__(self, 'validations', tuple(self.validations))

    def widget(self, widget_type):
        for widget in self.widgets:
            if widget.type == widget_type:
                return widget
        return None

    def has_widget(self, widget_type):
        return self.widget(widget_type) is not None

    def yield_band(self):
        """(min, max) yield percentages implied by expected yield and tolerance"""
        if self.expected_yield is None:
            return None
        tolerance = (self.yield_tolerance or 0) / 100
        return (self.expected_yield * (1 - tolerance), self.expected_yield * (1 + tolerance))

    def to_dict(self):
        """Presentation form for the API; formulas and custom validators stay server-side"""
        return {
            'stage_type': self.stage_type,
            'display_name': self.display_name,
            'icon': self.icon,
            'description': self.description,
            'widgets': [
                {'type': w.type, 'required': w.required, 'config': dict(w.config)}
                for w in self.widgets
            ],
            'validations': [
                {'field': r.field, 'type': r.type, 'min': r.min, 'max': r.max, 'error_message': r.error_message}
                for r in self.validations
            ],
            'expected_yield': self.expected_yield,
            'yield_tolerance': self.yield_tolerance,
            'expected_waste_percent': self.expected_waste_percent,
            'cost_calculation': self.cost_calculation.type,
            'input_label': self.input_label,
            'output_label': self.output_label,
            'input_unit': self.input_unit,
            'output_unit': self.output_unit,
        }


def duration_cost(ctx):
    """Work-center time cost: hourly rate pro-rated over whole minutes"""
    if not ctx.duration_minutes or not ctx.hourly_rate:
        return 0
    return round_half_up((ctx.hourly_rate / 60) * ctx.duration_minutes)


def materials_cost(ctx):
    """Sum of qty x unit cost over the materials consumed"""
    if not ctx.materials:
        return 0
    return round_half_up(sum(m.qty * m.unit_cost for m in ctx.materials))


OPERATOR_REQUIRED = ValidationRule(
    field='operator',
    type='required',
    error_message='Please assign an operator',
)

OUTPUT_POSITIVE = ValidationRule(
    field='output_qty',
    type='range',
    min=0.01,
    error_message='Output quantity must be positive',
)


# Freeze-drying: output is typically 10% of the input weight, the cycle runs
# 24h+ and the freeze-dryer's electricity dominates cost.
SUBLIMATION_CONFIG = StageConfiguration(
    stage_type='SUBLIMATION',
    display_name='Sublimation (Freeze-Drying)',
    icon='snowflake',
    description='Freeze-dry blended fruit mixture to remove 80-90% water content using low temperature and vacuum',
    widgets=(
        StageWidget('operator', required=True),
        StageWidget('equipment_unit', required=True, config={'work_center_type': 'SUBLIMATION'}),
        StageWidget('stopwatch', required=True, config={
            'allow_pause': True,
            'track_pause_history': True,
            'display_unit': 'hours',
        }),
        StageWidget('output', required=True),
        StageWidget('batch_quality', required=False, config={
            'track_moisture': True,
            'track_visual_quality': True,
            'track_color_consistency': True,
        }),
    ),
    expected_yield=10,
    yield_tolerance=30,
    validations=(
        OPERATOR_REQUIRED,
        ValidationRule(
            field='equipment',
            type='required',
            error_message='Please select a freeze-dryer unit',
        ),
        OUTPUT_POSITIVE,
        ValidationRule(
            field='timer',
            type='timer_status',
            error_message='Timer must be stopped before submitting',
        ),
        ValidationRule(
            field='yield',
            type='yield_range',
            min=7,
            max=13,
            error_message='Yield outside expected range (7-13%). This may indicate equipment issues or measurement errors.',
        ),
    ),
    cost_calculation=CostCalculation(type='electricity', formula=duration_cost),
    input_label='Input from Mixing',
    output_label='Dried Fruit Output',
)

MIXING_CONFIG = StageConfiguration(
    stage_type='MIXING',
    display_name='Mixing & Blending',
    icon='blender',
    description='Blend raw materials (fruit, additives, preservatives) into uniform mixture for sublimation',
    widgets=(
        StageWidget('operator', required=True),
        StageWidget('materials', required=True),
        StageWidget('output', required=True),
        StageWidget('waste', required=False),
    ),
    expected_yield=95,
    yield_tolerance=5,
    expected_waste_percent=5,
    validations=(
        OPERATOR_REQUIRED,
        ValidationRule(
            field='materials',
            type='required',
            error_message='Must specify input materials and quantities',
        ),
        OUTPUT_POSITIVE,
        ValidationRule(
            field='yield',
            type='yield_range',
            min=90,
            max=100,
            error_message='Yield outside expected range (90-100%). Check for material loss or excessive waste.',
        ),
    ),
    cost_calculation=CostCalculation(type='materials', formula=materials_cost),
    input_label='Raw Materials',
    output_label='Blended Mixture',
)

CLEANING_CONFIG = StageConfiguration(
    stage_type='CLEANING',
    display_name='Equipment Cleaning',
    icon='broom',
    description='Clean and sanitize equipment between production batches',
    widgets=(
        StageWidget('operator', required=True),
        StageWidget('stopwatch', required=False, config={'allow_pause': False}),
    ),
    # Prep work, no material yield
    expected_yield=100,
    yield_tolerance=0,
    validations=(
        OPERATOR_REQUIRED,
    ),
    cost_calculation=CostCalculation(type='labor', formula=duration_cost),
    input_label='Used Equipment',
    output_label='Clean Equipment',
    input_unit='units',
    output_unit='units',
)

PACKING_CONFIG = StageConfiguration(
    stage_type='PACKING',
    display_name='Packing & Labeling',
    icon='package',
    description='Package dried fruit into containers with labels and sealing',
    widgets=(
        StageWidget('operator', required=True),
        StageWidget('output', required=True),
        # Damaged packages
        StageWidget('waste', required=False),
    ),
    expected_yield=98,
    yield_tolerance=3,
    expected_waste_percent=2,
    validations=(
        OPERATOR_REQUIRED,
        OUTPUT_POSITIVE,
    ),
    cost_calculation=CostCalculation(type='labor', formula=duration_cost),
    input_label='Dried Fruit Product',
    output_label='Packaged Product',
    output_unit='units',
)


class StageConfigRegistry(Mapping):
    """Read-only stage_type -> StageConfiguration lookup"""

    def __init__(self, configs=()):
        table = {}
        for config in configs:
            if config.stage_type in table:
                raise ValueError(f"Duplicate stage configuration: {config.stage_type}")
            table[config.stage_type] = config
        self._configs = MappingProxyType(table)

    @classmethod
    def default(cls):
        return cls([SUBLIMATION_CONFIG, MIXING_CONFIG, CLEANING_CONFIG, PACKING_CONFIG])

    def __getitem__(self, stage_type):
        return self._configs[stage_type]

    def __iter__(self):
        return iter(self._configs)

    def __len__(self):
        return len(self._configs)

    def stage_types(self):
        return list(self._configs)



def get_stage_config(stage_type):
    """Configuration for stage_type from the registry built at startup, or None"""
    return apps.get_app_config('manufacturing').stage_configs.get(stage_type)


def get_available_stage_types():
    return apps.get_app_config('manufacturing').stage_configs.stage_types()
