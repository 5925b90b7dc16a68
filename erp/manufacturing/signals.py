"""Drop cached equipment listings when a unit changes"""
import logging

from django.db.models.signals import post_delete, post_save
from django.dispatch import receiver

from erp.core.cache_utils import invalidate_cache_keys

from .models import EquipmentUnit
from .services import equipment_units_cache_key

logger = logging.getLogger(__name__)


@receiver(post_save, sender=EquipmentUnit)
@receiver(post_delete, sender=EquipmentUnit)
def invalidate_equipment_units(sender, instance, **kwargs):
    logger.debug(f"Invalidating equipment cache for work center {instance.work_center_id}")
    invalidate_cache_keys(equipment_units_cache_key(instance.work_center_id))
