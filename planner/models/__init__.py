from planner.models.models import Folder
from planner.models.models import Item
from planner.models.models import PlannerData
from planner.models.models import Semester

__all__ = ["Folder", "Item", "PlannerData", "Semester"]
