"""
User roles enumeration.

Defines the role types for the education marketplace.
"""

import enum


class UserRole(str, enum.Enum):
    """
    User role enumeration.

    Roles:
        ADMIN: Reviews payouts, refunds payments
        TEACHER: Receives earnings and requests payouts
        STUDENT: Pays for sessions and courses (default role)
    """
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    STUDENT = "STUDENT"
