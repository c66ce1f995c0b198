"""Instance builder for the classes under test.

Applies one construction strategy, chosen per descriptor, to either the
reference or the submission class. The strategy is a tagged choice
(``DefaultConstruction``, ``DesignatedConstruction``,
``ArgumentConstruction``) rather than exception-driven fallback: when a
construction path is designated, the zero-argument constructor is never
tried.
"""

from __future__ import annotations

import inspect
import logging
from random import Random
from typing import TYPE_CHECKING, Any

from refcheck.errors import ConstructionError, GeneratorResolutionError
from refcheck.generators import call_with_values, constructor_parameters
from refcheck.models import (
    ArgumentConstruction,
    DefaultConstruction,
    DesignatedConstruction,
)

if TYPE_CHECKING:
    from refcheck.generators import GeneratorRegistry
    from refcheck.models import ConstructionStrategy

logger = logging.getLogger(__name__)


class InstanceBuilder:
    """Builds instances of a class under test with a fixed strategy.

    Attributes:
        strategy: The construction strategy applied to every class.
        default_constructor_unsafe: Whether zero-argument construction is
            forbidden.
    """

    def __init__(
        self,
        strategy: ConstructionStrategy | None = None,
        *,
        default_constructor_unsafe: bool = False,
        registry: GeneratorRegistry | None = None,
    ) -> None:
        """Initialize the builder.

        Args:
            strategy: Construction strategy; defaults to zero-argument
                construction.
            default_constructor_unsafe: Refuse zero-argument construction.
            registry: Generator registry, required for
                ``ArgumentConstruction``.
        """
        self.strategy = strategy if strategy is not None else DefaultConstruction()
        self.default_constructor_unsafe = default_constructor_unsafe
        self._registry = registry

    def check(self, cls: type[Any]) -> None:
        """Verify that the strategy can construct *cls*.

        Args:
            cls: Reference or submission class.

        Raises:
            ConstructionError: If *cls* has no valid construction path under
                the strategy.
        """
        strategy = self.strategy
        if isinstance(strategy, DefaultConstruction):
            self._check_default(cls)
        elif isinstance(strategy, DesignatedConstruction):
            self._check_designated(cls, strategy.factory)
        elif isinstance(strategy, ArgumentConstruction):
            self._check_arguments(cls)

    def receiver_arguments(
        self, cls: type[Any], complexity: int, rng: Random
    ) -> tuple[Any, ...] | None:
        """Generate constructor arguments for *cls* when the strategy needs them.

        Args:
            cls: Class whose ``__init__`` annotations drive generation
                (the reference class).
            complexity: Current complexity level.
            rng: Trial random source.

        Returns:
            The generated arguments, or ``None`` for strategies that take none.
        """
        if not isinstance(self.strategy, ArgumentConstruction):
            return None
        registry = self._require_registry()
        return tuple(
            registry.generate(hint, complexity, rng)
            for _, _, hint in constructor_parameters(cls)
        )

    def build(
        self,
        cls: type[Any],
        complexity: int,
        rng: Random,
        receiver_arguments: tuple[Any, ...] | None = None,
    ) -> Any:
        """Construct one instance of *cls*.

        Exceptions raised by the class's own construction code propagate to
        the caller, which records them as a faulted outcome.

        Args:
            cls: Reference or submission class.
            complexity: Current complexity level.
            rng: Random source handed to a designated factory.
            receiver_arguments: Arguments for ``ArgumentConstruction``.

        Returns:
            A new instance of *cls*.

        Raises:
            ConstructionError: If the strategy is refused for *cls*.
            TypeError: If a designated factory returns a foreign object.
        """
        strategy = self.strategy
        if isinstance(strategy, DesignatedConstruction):
            factory = getattr(cls, strategy.factory)
            instance = factory(complexity, rng)
            if not isinstance(instance, cls):
                msg = (
                    f"{cls.__name__}.{strategy.factory} returned "
                    f"{type(instance).__name__}, expected {cls.__name__}"
                )
                raise TypeError(msg)
            return instance

        if isinstance(strategy, ArgumentConstruction):
            if receiver_arguments is None:
                receiver_arguments = self.receiver_arguments(cls, complexity, rng)
            return call_with_values(
                cls, constructor_parameters(cls), receiver_arguments or ()
            )

        if self.default_constructor_unsafe:
            raise self._unsafe_error(cls)
        return cls()

    # -- checks --------------------------------------------------------------

    def _unsafe_error(self, cls: type[Any]) -> ConstructionError:
        return ConstructionError(
            f"Default construction of {cls.__name__} is marked unsafe "
            "and no construction path is designated",
            diagnostics={"class": cls.__qualname__, "strategy": "default"},
        )

    def _check_default(self, cls: type[Any]) -> None:
        if self.default_constructor_unsafe:
            raise self._unsafe_error(cls)
        try:
            inspect.signature(cls).bind()
        except ValueError:
            # Signature unavailable (some builtins); defer to build time.
            return
        except TypeError as exc:
            msg = f"{cls.__name__} cannot be constructed without arguments: {exc}"
            raise ConstructionError(
                msg, diagnostics={"class": cls.__qualname__, "strategy": "default"}
            ) from exc

    def _check_designated(self, cls: type[Any], factory_name: str) -> None:
        diagnostics = {
            "class": cls.__qualname__,
            "strategy": "designated",
            "factory": factory_name,
        }
        factory = getattr(cls, factory_name, None)
        if factory is None or not callable(factory):
            msg = f"{cls.__name__} has no callable construction factory {factory_name!r}"
            raise ConstructionError(msg, diagnostics=diagnostics)
        try:
            inspect.signature(factory).bind(0, Random(0))
        except ValueError:
            return
        except TypeError as exc:
            msg = (
                f"{cls.__name__}.{factory_name} must accept (complexity, random): {exc}"
            )
            raise ConstructionError(msg, diagnostics=diagnostics) from exc

    def _check_arguments(self, cls: type[Any]) -> None:
        diagnostics = {"class": cls.__qualname__, "strategy": "arguments"}
        try:
            parameters = constructor_parameters(cls)
        except (TypeError, ValueError) as exc:
            msg = f"{cls.__name__} cannot be built from generated arguments: {exc}"
            raise ConstructionError(msg, diagnostics=diagnostics) from exc
        try:
            self._require_registry().require([hint for _, _, hint in parameters])
        except GeneratorResolutionError as exc:
            msg = f"{cls.__name__} constructor arguments cannot be generated: {exc}"
            raise ConstructionError(
                msg, diagnostics={**diagnostics, **exc.diagnostics}
            ) from exc

    def _require_registry(self) -> GeneratorRegistry:
        if self._registry is None:
            msg = "ArgumentConstruction requires a generator registry"
            raise ConstructionError(msg, diagnostics={"strategy": "arguments"})
        return self._registry
