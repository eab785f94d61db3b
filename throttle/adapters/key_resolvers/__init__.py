from throttle.adapters.key_resolvers.base import KeyResolver, client_ip
from throttle.adapters.key_resolvers.composite import CompositeKeyResolver
from throttle.adapters.key_resolvers.header import HeaderKeyResolver
from throttle.adapters.key_resolvers.ip import IpKeyResolver
from throttle.adapters.key_resolvers.user import UserKeyResolver

__all__ = [
    "KeyResolver",
    "client_ip",
    "IpKeyResolver",
    "UserKeyResolver",
    "HeaderKeyResolver",
    "CompositeKeyResolver",
]
