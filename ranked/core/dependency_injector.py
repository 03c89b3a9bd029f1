import inspect
from typing import Optional


class DependencyInjector(object):
    """
    Does dependency injection.

    Dependencies are resolved by parameter name. A class with the init method
    ```
    def __init__(self, store, notifier):
        pass
    ```
    asks for two dependencies, called `store` and `notifier`. Each one is
    either an object registered with `add_injectables`, or an instance of
    another class passed to the same `build_classes` call.

    Every dependency is constructed exactly once, so two classes that both ask
    for `match_registry` receive the same instance.

    # Example
    ```
    class MatchRegistry(object):
        def __init__(self, store):
            self.store = store

    class OutcomeResolver(object):
        def __init__(self, match_registry):
            self.match_registry = match_registry

    injector = DependencyInjector()
    injector.add_injectables(store=InMemoryStore())
    classes = injector.build_classes({
        "match_registry": MatchRegistry,
        "outcome_resolver": OutcomeResolver
    })

    assert classes["outcome_resolver"].match_registry is classes["match_registry"]
    ```
    """

    def __init__(self) -> None:
        # Objects which are available to the constructors of injected objects
        self.injectables: dict[str, object] = {}

    def add_injectables(
        self, injectables: dict[str, object] = {}, **kwargs: object
    ) -> None:
        """
        Register additional objects that can be requested by injected classes.
        """
        self.injectables.update(injectables)
        self.injectables.update(kwargs)

    def build_classes(
        self, classes: dict[str, type] = {}, **kwargs: type
    ) -> dict[str, object]:
        """
        Resolve dependencies by name and instantiate each class.

        Raises `RuntimeError` if a dependency can not be found or if the
        dependencies form a cycle.
        """
        pending = {**kwargs, **classes}
        instances: dict[str, object] = {}

        for name in pending:
            instances[name] = self._build(name, pending, instances, path=())

        self.add_injectables(**instances)
        return instances

    def _build(
        self,
        name: str,
        pending: dict[str, type],
        instances: dict[str, object],
        path: tuple[str, ...],
        requested_by: Optional[str] = None
    ) -> object:
        if name in instances:
            return instances[name]
        if name in self.injectables:
            return self.injectables[name]
        if name in path:
            cycle = path[path.index(name):] + (name,)
            raise RuntimeError(
                f"Could not resolve cyclic dependency: {' -> '.join(cycle)}"
            )
        if name not in pending:
            raise RuntimeError(
                f"Some dependencies could not be resolved: {name!r} "
                f"requested by {requested_by!r}"
            )

        klass = pending[name]
        arguments = {
            param: self._build(
                param, pending, instances, path + (name,), requested_by=name
            )
            for param in self._parameter_names(klass)
        }
        instances[name] = klass(**arguments)
        return instances[name]

    @staticmethod
    def _parameter_names(klass: type) -> list[str]:
        signature = inspect.signature(klass.__init__)
        # Strip off the `self` parameter and anything with a default
        return [
            param.name
            for param in list(signature.parameters.values())[1:]
            if param.default is inspect.Parameter.empty
            and param.kind not in (
                inspect.Parameter.VAR_POSITIONAL,
                inspect.Parameter.VAR_KEYWORD
            )
        ]
