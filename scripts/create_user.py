#!/usr/bin/env python3
"""Create (or update) a user and print an access token for it."""

import argparse
import asyncio

from sqlalchemy import select

from app.core.security import create_access_token
from app.database import async_session_factory
from app.models.user import User


async def create_user(
    email: str,
    role: str = "member",
    tier: str = "free",
    verified: bool = False,
    first_name: str | None = None,
    city: str | None = None,
) -> None:
    """Create the user if it doesn't exist, otherwise update its access fields."""
    async with async_session_factory() as session:
        result = await session.execute(select(User).where(User.email == email))
        user = result.scalar_one_or_none()

        if user:
            user.role = role
            user.subscription_tier = tier
            user.is_verified = verified
            user.is_active = True
            if city:
                user.city = city
            print(f"Updated existing user: {email}")
        else:
            user = User(
                email=email,
                role=role,
                subscription_tier=tier,
                is_verified=verified,
                first_name=first_name,
                city=city,
                is_active=True,
            )
            session.add(user)
            print(f"Created user: {email}")
        await session.commit()

        print(f"ID:    {user.id}")
        print(f"Role:  {role}  Tier: {tier}  Verified: {verified}")
        print(f"Token: {create_access_token({'sub': str(user.id), 'email': email, 'role': role})}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create a user and mint an access token")
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--role", default="member", choices=["member", "admin"])
    parser.add_argument("--tier", default="free", choices=["free", "plus"])
    parser.add_argument("--verified", action="store_true", help="Mark identity as verified")
    parser.add_argument("--first-name", default=None)
    parser.add_argument("--city", default=None, help="Home town, required to borrow town listings")

    args = parser.parse_args()

    asyncio.run(
        create_user(
            email=args.email,
            role=args.role,
            tier=args.tier,
            verified=args.verified,
            first_name=args.first_name,
            city=args.city,
        )
    )
