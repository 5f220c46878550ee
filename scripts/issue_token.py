"""Issue a development access token signed with the shared JWT secret.

Usage:
    python -m scripts.issue_token --user-id cust-1 --role customer
"""

import argparse

from app.models.chat_session import UserRole
from app.services.token_service import TokenService


def main() -> None:
    parser = argparse.ArgumentParser(description="Issue a dev access token")
    parser.add_argument("--user-id", required=True, help="Token subject")
    parser.add_argument(
        "--role",
        default=UserRole.CUSTOMER.value,
        choices=[role.value for role in UserRole],
        help="CRM role",
    )
    parser.add_argument("--email", default=None, help="Defaults to <user-id>@example.com")
    args = parser.parse_args()

    email = args.email or f"{args.user_id}@example.com"
    print(TokenService(None).create_access_token(args.user_id, email, args.role))


if __name__ == "__main__":
    main()
