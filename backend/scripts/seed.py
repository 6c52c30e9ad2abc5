"""Database seed script: creates roles, permissions, a small department tree, users and sample definitions.

Run: python -m scripts.seed
"""

import asyncio
import sys
import os

# Ensure project root is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


LEAVE_TWO_STEP = {
    "nodes": [
        {"id": "start", "type": "start", "name": "Start"},
        {"id": "supervisor", "type": "approval", "name": "Supervisor approval"},
        {"id": "admin", "type": "approval", "name": "Administrator approval"},
        {"id": "end", "type": "end", "name": "End"},
    ]
}

LEAVE_FORM = {
    "fields": [
        {"name": "leaveType", "type": "enum", "required": True,
         "options": ["annual", "sick", "personal", "other"]},
        {"name": "startDate", "type": "date", "required": True},
        {"name": "endDate", "type": "date", "required": True, "notBefore": "startDate"},
        {"name": "reason", "type": "string", "maxLength": 500},
    ]
}

GENERIC_APPROVAL = {
    "nodes": [
        {"id": "start", "type": "start", "name": "Start"},
        {"id": "manager", "type": "approval", "name": "Manager approval",
         "assignee": {"type": "supervisor"}},
        {"id": "end", "type": "end", "name": "End"},
    ]
}


async def seed():
    """Seed the database with default data."""
    from db.database import init_db
    from db.database import AsyncSessionLocal
    from db.models.department import Department
    from db.models.user import User
    from db.models.role import Role
    from db.models.permission import Permission
    from core.security import hash_password
    from services.definition_service import DefinitionService
    from sqlalchemy import select

    # Initialize DB tables
    await init_db()

    async with AsyncSessionLocal() as db:
        # 1. Permissions
        permission_defs = [
            ("*", "Everything"),
            ("workflows.manage", "Create, version and activate workflow definitions"),
            ("directory.manage", "Manage users and departments"),
        ]

        permissions = {}
        for code, description in permission_defs:
            result = await db.execute(select(Permission).where(Permission.code == code))
            perm = result.scalar_one_or_none()
            if not perm:
                perm = Permission(code=code, description=description)
                db.add(perm)
            permissions[code] = perm

        await db.flush()
        print(f"[seed] {len(permissions)} permissions ready")

        # 2. Roles
        role_defs = {
            "admin": {
                "name": "Administrator",
                "description": "Final approver and full access",
                "permissions": ["*"],
            },
            "employee": {
                "name": "Employee",
                "description": "Starts and follows their own workflows",
                "permissions": [],
            },
        }

        roles = {}
        for code, role_def in role_defs.items():
            result = await db.execute(select(Role).where(Role.code == code))
            role = result.scalar_one_or_none()
            if not role:
                role = Role(
                    code=code,
                    name=role_def["name"],
                    description=role_def["description"],
                    is_system_role=True,
                )
                db.add(role)
                await db.flush()
                await db.refresh(role, ["permissions"])
                for perm_code in role_def["permissions"]:
                    role.permissions.append(permissions[perm_code])
            roles[code] = role

        await db.flush()
        print(f"[seed] {len(roles)} roles ready")

        # 3. Users and departments
        password = os.environ.get("SEED_PASSWORD", "changeme123")
        user_defs = [
            ("admin@oa.local", "Administrator", None, ["admin", "employee"]),
            ("ceo@oa.local", "Chief Executive", "HQ", ["employee"]),
            ("manager@oa.local", "Engineering Manager", "ENG", ["employee"]),
            ("employee@oa.local", "Engineer", "ENG", ["employee"]),
        ]

        users = {}
        for email, name, _, role_codes in user_defs:
            result = await db.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()
            if not user:
                user = User(
                    email=email,
                    password_hash=hash_password(password),
                    name=name,
                    is_active=True,
                )
                db.add(user)
                await db.flush()
                await db.refresh(user, ["roles"])
                user.roles.extend(roles[c] for c in role_codes)
                print(f"[seed] Created user: {email}")
            users[email] = user

        department_defs = [
            ("HQ", "Headquarters", None, "ceo@oa.local"),
            ("ENG", "Engineering", "HQ", "manager@oa.local"),
        ]
        departments = {}
        for code, name, parent_code, manager_email in department_defs:
            result = await db.execute(select(Department).where(Department.code == code))
            department = result.scalar_one_or_none()
            if not department:
                department = Department(
                    code=code,
                    name=name,
                    parent_id=departments[parent_code].id if parent_code else None,
                    manager_id=users[manager_email].id,
                )
                db.add(department)
                await db.flush()
            departments[code] = department

        for email, _, department_code, _ in user_defs:
            if department_code and not users[email].department_id:
                users[email].department_id = departments[department_code].id

        await db.flush()
        print(f"[seed] {len(departments)} departments ready")

        # 4. Sample definitions
        svc = DefinitionService(db)
        admin_id = users["admin@oa.local"].id
        samples = [
            ("Leave request", "leave-2step", "leave", LEAVE_TWO_STEP, LEAVE_FORM),
            ("Generic approval", "generic-approval", "generic", GENERIC_APPROVAL, None),
        ]
        for name, code, category, node_config, form_schema in samples:
            if await svc.list_versions(code):
                print(f"[seed] Definition exists: {code}")
                continue
            definition = await svc.create_definition(
                name=name,
                code=code,
                node_config=node_config,
                form_schema=form_schema,
                category=category,
                created_by_id=admin_id,
            )
            await svc.activate(definition.id, updated_by_id=admin_id)
            print(f"[seed] Created definition: {code} v{definition.version}")

        await db.commit()
        print("[seed] Database seeded successfully!")


if __name__ == "__main__":
    asyncio.run(seed())
