from .base import (
    OtpRecord,
    OtpRepository,
    RateLimitRecord,
    RateLimitRepository,
    RefreshTokenRecord,
    RefreshTokenRepository,
    UserRecord,
    UserRepository,
)
from .memory import (
    MemoryOtpRepository,
    MemoryRateLimitRepository,
    MemoryRefreshTokenRepository,
    MemoryUserRepository,
)
from .sql import (
    SqlOtpRepository,
    SqlRateLimitRepository,
    SqlRefreshTokenRepository,
    SqlUserRepository,
)
