from .controller import AuthenticationController, looks_authenticated
from .machine import AuthMachine, AuthState, transition
from .selectors import LoginSelectors

__all__ = [
    "AuthMachine",
    "AuthState",
    "AuthenticationController",
    "LoginSelectors",
    "looks_authenticated",
    "transition",
]
