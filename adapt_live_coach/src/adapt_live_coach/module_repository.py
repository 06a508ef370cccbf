"""
Module Repository

Looks up training modules and their per-step vision needs. Built-in modules
are always available; Supabase-backed modules are read from the `modules` and
`module_needs` tables when a client is configured.
"""

import logging
from typing import Dict, Optional

from adapt_live_coach.data import BUILTIN_MODULE_NEEDS, BUILTIN_MODULES
from adapt_live_coach.models import ModuleNeeds, StepNeeds, TrainingModule

logger = logging.getLogger(__name__)


class ModuleRepository:
    """Read-only access to modules and module needs."""

    def __init__(
        self,
        supabase_client=None,
        modules: Optional[Dict[str, TrainingModule]] = None,
        module_needs: Optional[ModuleNeeds] = None,
    ):
        self.supabase = supabase_client
        self.use_supabase = supabase_client is not None
        self._modules = dict(BUILTIN_MODULES if modules is None else modules)
        self._needs: ModuleNeeds = {
            slug: dict(steps)
            for slug, steps in (BUILTIN_MODULE_NEEDS if module_needs is None else module_needs).items()
        }

    def add_module(self, module: TrainingModule, needs: Optional[Dict[int, StepNeeds]] = None) -> None:
        self._modules[module.slug] = module
        if needs is not None:
            self._needs[module.slug] = dict(needs)

    async def get_module(self, slug: str) -> Optional[TrainingModule]:
        """Return the module for `slug`, or None if it does not exist."""
        if slug in self._modules:
            return self._modules[slug]
        if not self.use_supabase:
            return None

        try:
            result = self.supabase.table("modules").select("*").eq("slug", slug).execute()
        except Exception as e:
            logger.warning(f"⚠️ [ModuleRepository] Failed to load module '{slug}': {e}")
            return None

        if not result.data:
            return None
        try:
            module = TrainingModule.from_dict(result.data[0])
        except (KeyError, TypeError) as e:
            logger.warning(f"⚠️ [ModuleRepository] Module '{slug}' has an invalid shape: {e}")
            return None
        self._modules[slug] = module
        return module

    async def get_module_needs(self) -> ModuleNeeds:
        """
        All module needs, keyed by module slug then step index.

        Called once when a coaching session starts.
        """
        needs: ModuleNeeds = {slug: dict(steps) for slug, steps in self._needs.items()}
        if not self.use_supabase:
            return needs

        try:
            result = self.supabase.table("module_needs").select("*").execute()
        except Exception as e:
            logger.warning(f"⚠️ [ModuleRepository] Failed to load module needs, using built-ins: {e}")
            return needs

        for row in result.data or []:
            try:
                needs.setdefault(row["module_id"], {})[int(row["step_index"])] = StepNeeds.from_dict(row)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"⚠️ [ModuleRepository] Skipping malformed module_needs row: {e}")
        return needs
