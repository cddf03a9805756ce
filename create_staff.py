import argparse

from payper.database import get_supabase_admin
from payper.models.user import StaffUser, UserRole


def create_staff_user(email: str, password: str, role: UserRole, full_name: str = None) -> StaffUser:
    supabase_admin = get_supabase_admin()

    # Create auth user
    auth_response = supabase_admin.auth.admin.create_user({
        "email": email,
        "password": password,
        "email_confirm": True
    })

    staff = StaffUser(id=auth_response.user.id, email=email, role=role, full_name=full_name)
    supabase_admin.table("profiles").insert(staff.model_dump(mode="json")).execute()
    print(f"{role.value} created: {email}")
    return staff


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create a staff login")
    parser.add_argument("--role", choices=[r.value for r in UserRole], default=UserRole.MANAGER.value)
    parser.add_argument("--name", default=None)
    args = parser.parse_args()

    email = input("Staff email: ")
    password = input("Staff password: ")
    create_staff_user(email, password, UserRole(args.role), args.name)
