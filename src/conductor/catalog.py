"""Model listing and runtime model switching for the active provider."""

import logging
from typing import Callable, List, Optional

from .cache import TTLCache
from .errors import UnknownModelError
from .gateway import ProviderGateway
from .models import ModelInfo

logger = logging.getLogger(__name__)

MODEL_LIST_TTL = 600.0


class ModelCatalog:
    """Lists the active provider's models and switches between them.

    The model list is fetched lazily and cached per provider. Switching only
    changes the gateway's model; the provider is fixed for the session.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        ttl: float = MODEL_LIST_TTL,
        cache: Optional[TTLCache] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.gateway = gateway
        self.ttl = ttl
        self.cache = cache if cache is not None else TTLCache(max_size=8, ttl=ttl, clock=clock)

    def _key(self):
        return ("models", self.gateway.provider)

    async def list_models(self, refresh: bool = False) -> List[ModelInfo]:
        key = self._key()
        if refresh:
            self.cache.delete(key)
        return await self.cache.get_or_load(key, self.gateway.list_models, ttl=self.ttl)

    def get_current_model(self) -> str:
        return self.gateway.profile.model

    async def set_model(self, model_id: str) -> ModelInfo:
        # A list loaded by this call is already fresh and is not fetched again.
        was_cached = self._key() in self.cache
        model = self._find(await self.list_models(), model_id)
        if model is None and was_cached:
            logger.debug("Model %s not in cached list, refreshing", model_id)
            model = self._find(await self.list_models(refresh=True), model_id)
        if model is None:
            raise UnknownModelError(
                f"Model '{model_id}' is not available from {self.gateway.provider}"
            )
        self.gateway.use_model(model.id)
        return model

    @staticmethod
    def _find(models: List[ModelInfo], model_id: str) -> Optional[ModelInfo]:
        return next((m for m in models if m.id == model_id), None)
