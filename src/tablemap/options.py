from dataclasses import dataclass

from tablemap.strategy import get_available_dialects, get_strategy_class
from tablemap.strategy import is_supported_dialect

from libb import ConfigOptions, scriptname

__all__ = ['MapperOptions']


@dataclass
class MapperOptions(ConfigOptions):
    """Options

    supported driver names: `mysql`, `sqlite`

    Connection pooling options:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)

    Mapper behavior:
    - read_only: Every mutation becomes a no-op returning 0
    - enable_cache: Turn the record cache on as soon as the mapper exists
    - log_sql: Log every rendered statement to the `tablemap.sql` logger
    - log_errors: Log store and mapping failures before raising them
    """
    drivername: str = 'sqlite'
    hostname: str = None
    username: str = None
    password: str = None
    database: str = None
    port: int = 0
    timeout: int = 0
    appname: str = None
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30
    # Mapper behavior
    read_only: bool = False
    enable_cache: bool = False
    log_sql: bool = False
    log_errors: bool = True

    def __post_init__(self):
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ValueError(f'drivername must be one of: {available}')
        self.appname = self.appname or scriptname() or 'python_console'
        strategy_cls = get_strategy_class(self.drivername)
        strategy_cls.validate_options(self)
