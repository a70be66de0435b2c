from .db import db
from .user import User
from .email_otp import EmailOTP
from .refresh_token import RefreshToken
from .rate_limit import RateLimit
