# SPDX-License-Identifier: LGPL-2.1-or-later

from djinn.config import Args, Config
from djinn.environment import EnvironmentBridge
from djinn.identity import IdentityStore
from djinn.process import ProcessLocator
from djinn.user import InvokingUser


class Context:
    """Everything one invocation of djinn operates on."""

    def __init__(
        self,
        args: Args,
        config: Config,
        *,
        user: InvokingUser,
        locator: ProcessLocator,
        identity: IdentityStore,
        environment: EnvironmentBridge,
    ) -> None:
        self.args = args
        self.config = config
        self.user = user
        self.locator = locator
        self.identity = identity
        self.environment = environment
