from learnlynk.platform.security import AuthContext, AuthorizationError, ResourceAction, decide

__all__ = ["AuthContext", "AuthorizationError", "ResourceAction", "decide"]
