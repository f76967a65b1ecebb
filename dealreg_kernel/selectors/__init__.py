"""Read-only selectors for the deal registration kernel."""

from dealreg_kernel.selectors.base import BaseSelector
from dealreg_kernel.selectors.deal_selector import DealSelector

__all__ = ["BaseSelector", "DealSelector"]
