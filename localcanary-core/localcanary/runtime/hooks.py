import functools

from plux import PluginManager, plugin

# plugin namespace constants
HOOKS_ON_SERVICE_START = "localcanary.hooks.on_service_start"
HOOKS_ON_SERVICE_SHUTDOWN = "localcanary.hooks.on_service_shutdown"


def hook(namespace: str, priority: int = 0, **kwargs):
    """
    Decorator for creating functional plugins that have a hook_priority attribute. Hooks with a higher priority value
    will be executed earlier.
    """

    def wrapper(fn):
        fn.hook_priority = priority
        return plugin(namespace=namespace, **kwargs)(fn)

    return wrapper


def hook_spec(namespace: str):
    """
    Creates a new hook decorator bound to a namespace.

    on_service_start = hook_spec("localcanary.hooks.on_service_start")

    @on_service_start()
    def foo():
        pass

    # run all hooks in order
    on_service_start.run()
    """
    fn = functools.partial(hook, namespace=namespace)
    # attach hook manager and run method to decorator for convenience calls
    fn.manager = HookManager(namespace)
    fn.run = fn.manager.run_in_order
    return fn


class HookManager(PluginManager):
    def load_all_sorted(self, propagate_exceptions=False):
        """
        Loads all hook plugins and sorts them by their hook_priority attribute.
        """
        plugins = self.load_all(propagate_exceptions)
        # the hook_priority attribute is part of the function wrapped in the FunctionPlugin
        plugins.sort(
            key=lambda _fn_plugin: getattr(_fn_plugin.fn, "hook_priority", 0), reverse=True
        )
        return plugins

    def run_in_order(self, *args, **kwargs):
        """
        Loads and runs all plugins in order them with the given arguments.
        """
        for fn_plugin in self.load_all_sorted():
            fn_plugin(*args, **kwargs)

    def __str__(self):
        return "HookManager(%s)" % self.namespace

    def __repr__(self):
        return self.__str__()


on_service_start = hook_spec(HOOKS_ON_SERVICE_START)
"""Hooks that are executed when a RoutingService is started, receives the service as argument."""

on_service_shutdown = hook_spec(HOOKS_ON_SERVICE_SHUTDOWN)
"""Hooks that are executed when a RoutingService shuts down, receives the service as argument."""
