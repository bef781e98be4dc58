# Named roll variables.
# Stores each user's variables as expression text, with a shared global scope
# consulted when a user hasn't defined a name themselves.

import json
import logging

import config

log = logging.getLogger(__name__)


class UndefinedNameError(NameError):
    pass


class Environment:
    def __init__(self, serialized: str | None = None) -> None:
        self.scopes: dict[str, dict[str, str]] = {}
        if serialized:
            self.scopes = _deserialize(serialized)
        self.scopes.setdefault(config.GLOBAL_SCOPE, {})
        self.modified = False

    def get(self, user: str, name: str) -> str:
        contents = self.scopes.get(str(user), {}).get(name)
        if contents is None:
            contents = self.scopes[config.GLOBAL_SCOPE].get(name)
        if contents is None:
            raise UndefinedNameError(f"name '{name}' is not defined.")
        return contents

    def set(self, user: str, name: str, contents: str) -> str | None:
        scope = self.scopes.setdefault(str(user), {})
        old = scope.get(name)
        scope[name] = contents
        self.modified = True
        return old

    def delete(self, user: str, name: str) -> str:
        scope = self.scopes.get(str(user), {})
        if name not in scope:
            if name in self.scopes[config.GLOBAL_SCOPE]:
                raise UndefinedNameError(
                    f"'{name}' is a global variable and can't be deleted; only your own variables can."
                )
            raise UndefinedNameError(f"name '{name}' is not defined.")
        self.modified = True
        return scope.pop(name)

    # A user's visible variables, their own definitions shadowing globals.
    def names(self, user: str) -> dict[str, str]:
        merged = dict(self.scopes[config.GLOBAL_SCOPE])
        merged.update(self.scopes.get(str(user), {}))
        return merged

    def serialize(self) -> str:
        return json.dumps(self.scopes, indent=2, ensure_ascii=False)

    def is_modified(self) -> bool:
        return self.modified

    def mark_saved(self):
        self.modified = False


def _deserialize(serialized: str) -> dict[str, dict[str, str]]:
    try:
        data = json.loads(serialized)
    except json.JSONDecodeError as err:
        raise ValueError(f"Malformed environment document: {err}") from err
    if data is None:
        return {}
    if not isinstance(data, dict) or not all(
        isinstance(scope, dict) for scope in data.values()
    ):
        raise ValueError("Environment document must map scopes to name/contents objects.")
    return {
        str(user): {str(name): str(contents) for name, contents in scope.items()}
        for user, scope in data.items()
    }


# One user's window onto an Environment. Only calls Environment methods,
# so `environment` may also be a manager proxy.
class UserEnvironmentView:
    def __init__(self, environment, user) -> None:
        self.environment = environment
        self.user = str(user)

    def get(self, name: str) -> str:
        return self.environment.get(self.user, name)

    def set(self, name: str, contents: str):
        self.environment.set(self.user, name, contents)

    def delete(self, name: str) -> str:
        return self.environment.delete(self.user, name)

    def names(self) -> dict[str, str]:
        return self.environment.names(self.user)
