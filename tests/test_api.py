"""
Tests for the HTTP API.
"""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from neoloc.api.app import create_app
from neoloc.auth.exceptions import StorageUnavailable

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, USER_PASSWORD


@pytest_asyncio.fixture
async def client(hub):
    app = create_app(hub, run_sweeper=False)
    async with TestClient(TestServer(app)) as client:
        yield client


async def login(client, email=ADMIN_EMAIL, password=ADMIN_PASSWORD):
    resp = await client.post('/api/auth/login', json={'email': email, 'password': password})
    assert resp.status == 200
    return (await resp.json())['token']


def bearer(token):
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def user_admin(hub, admin, make_user):
    """A manager who can administer users through a custom role, without the bypass."""
    user = make_user(role='manager')
    role = hub.rbac.create_role('user_admin', 'User Admin')
    for action in ('read', 'write', 'delete'):
        permission = hub.rbac.get_permission_by_name(f'system.users.{action}')
        hub.rbac.assign_permission_to_role(role.id, permission.id)
    hub.rbac.assign_role_to_user(user.id, role.id, assigned_by=admin.id)
    return user


class TestHealth:
    async def test_health(self, client):
        """Test the health endpoint."""
        resp = await client.get('/health')

        assert resp.status == 200
        assert (await resp.json())['status'] == 'healthy'

    async def test_cors_headers(self, client):
        """Test CORS headers on a normal response."""
        resp = await client.get('/health')

        assert resp.headers['Access-Control-Allow-Origin'] == '*'
        assert 'Authorization' in resp.headers['Access-Control-Allow-Headers']

    async def test_preflight(self, client):
        """Test an OPTIONS preflight is answered directly."""
        resp = await client.options('/api/auth/login')

        assert resp.status == 200
        assert 'POST' in resp.headers['Access-Control-Allow-Methods']

    async def test_cors_headers_on_unknown_route(self, client):
        """Test aiohttp's own 404 still carries CORS headers."""
        resp = await client.get('/api/does-not-exist')

        assert resp.status == 404
        assert resp.headers['Access-Control-Allow-Origin'] == '*'

    async def test_cors_headers_on_bad_body(self, client):
        """Test a non-JSON body rejection still carries CORS headers."""
        resp = await client.post('/api/auth/login', data='email=x')

        assert resp.status == 400
        assert resp.headers['Access-Control-Allow-Origin'] == '*'


class TestAuthEndpoints:
    """Test login, me and logout."""

    async def test_login(self, client):
        """Test successful login over HTTP."""
        resp = await client.post('/api/auth/login', json={
            'email': ADMIN_EMAIL,
            'password': ADMIN_PASSWORD,
        })
        data = await resp.json()

        assert resp.status == 200
        assert data['token']
        assert data['expiresAt']
        assert data['user']['email'] == ADMIN_EMAIL
        assert 'passwordHash' not in data['user']

    async def test_bad_credentials(self, client):
        """Test a wrong password is a 401 with a generic message."""
        resp = await client.post('/api/auth/login', json={
            'email': ADMIN_EMAIL,
            'password': 'wrong',
        })

        assert resp.status == 401
        assert await resp.json() == {'message': 'Invalid credentials'}

    async def test_unknown_user_same_response(self, client):
        """Test an unknown email gets the same response as a wrong password."""
        resp = await client.post('/api/auth/login', json={
            'email': 'nobody@neoloc.test',
            'password': 'wrong',
        })

        assert resp.status == 401
        assert await resp.json() == {'message': 'Invalid credentials'}

    async def test_invalid_body(self, client):
        """Test field validation errors are a 400 with details."""
        resp = await client.post('/api/auth/login', json={'email': 'not-an-email'})
        data = await resp.json()

        assert resp.status == 400
        assert data['message'] == 'Invalid input'
        assert {tuple(e['loc']) for e in data['errors']} >= {('password',)}

    async def test_body_not_json(self, client):
        """Test a non-JSON body is rejected."""
        resp = await client.post('/api/auth/login', data='email=x')

        assert resp.status == 400

    async def test_me_requires_token(self, client):
        """Test the current-user endpoint without a token."""
        resp = await client.get('/api/auth/me')

        assert resp.status == 401

    async def test_me_and_logout(self, client):
        """Test the session stops working after logout."""
        token = await login(client)

        resp = await client.get('/api/auth/me', headers=bearer(token))
        assert resp.status == 200
        assert (await resp.json())['email'] == ADMIN_EMAIL

        resp = await client.post('/api/auth/logout', headers=bearer(token))
        assert resp.status == 200

        resp = await client.get('/api/auth/me', headers=bearer(token))
        assert resp.status == 401


class TestSsoEndpoints:
    """Test minting and redemption over HTTP."""

    async def test_modules(self, client, hub):
        """Test the module list for the administrator."""
        token = await login(client)

        resp = await client.get('/api/modules', headers=bearer(token))

        assert resp.status == 200
        assert len(await resp.json()) == len(hub.modules.list_active_modules())

    async def test_get_module(self, client, module):
        """Test the module detail for a user with access."""
        token = await login(client)

        resp = await client.get(f'/api/modules/{module.id}', headers=bearer(token))

        assert resp.status == 200
        assert (await resp.json())['name'] == 'compras'

    async def test_get_module_without_access(self, client, make_user, module):
        """Test the module detail is refused without access."""
        user = make_user()
        token = await login(client, user.email, USER_PASSWORD)

        resp = await client.get(f'/api/modules/{module.id}', headers=bearer(token))

        assert resp.status == 403

    async def test_get_module_direct_grant(self, client, make_user, module):
        """Test a direct module grant opens the module detail."""
        user = make_user(module_access=['compras'])
        token = await login(client, user.email, USER_PASSWORD)

        resp = await client.get(f'/api/modules/{module.id}', headers=bearer(token))

        assert resp.status == 200

    async def test_get_unknown_module(self, client):
        """Test an unknown module id is a 404."""
        token = await login(client)

        resp = await client.get('/api/modules/missing', headers=bearer(token))

        assert resp.status == 404

    async def test_generate_and_validate(self, client, admin, module):
        """Test minting then redeeming a token, and that it works once."""
        token = await login(client)

        resp = await client.post(
            '/api/sso/generate-token',
            json={'moduleId': module.id},
            headers=bearer(token),
        )
        grant = await resp.json()
        assert resp.status == 200
        assert grant['redirectUrl'].startswith(module.url)

        resp = await client.post('/sso/validate-token', json={
            'token': grant['token'],
            'moduleId': module.id,
        })
        data = await resp.json()
        assert resp.status == 200
        assert data['valid'] is True
        assert data['userData']['id'] == admin.id
        assert data['userData']['email'] == ADMIN_EMAIL
        assert 'compras' in data['userData']['moduleAccess']

        resp = await client.post('/sso/validate-token', json={
            'token': grant['token'],
            'moduleId': module.id,
        })
        assert resp.status == 401
        assert await resp.json() == {'valid': False}

    async def test_generate_unknown_module(self, client):
        """Test minting for an unknown module."""
        token = await login(client)

        resp = await client.post(
            '/api/sso/generate-token',
            json={'moduleId': 'missing'},
            headers=bearer(token),
        )

        assert resp.status == 404

    async def test_generate_without_access(self, client, make_user, module):
        """Test minting for a module the user cannot open."""
        user = make_user()
        token = await login(client, user.email, USER_PASSWORD)

        resp = await client.post(
            '/api/sso/generate-token',
            json={'moduleId': module.id},
            headers=bearer(token),
        )

        assert resp.status == 403

    async def test_generate_without_session(self, client, module):
        """Test minting without a bearer token."""
        resp = await client.post('/api/sso/generate-token', json={'moduleId': module.id})

        assert resp.status == 401

    @pytest.mark.parametrize('body', [
        {'token': 'garbage', 'moduleId': 'm1'},
        {'moduleId': 'm1'},
        {},
    ])
    async def test_validate_rejects_without_detail(self, client, body):
        """Test every bad redemption request looks the same."""
        resp = await client.post('/sso/validate-token', json=body)

        assert resp.status == 401
        assert await resp.json() == {'valid': False}

    async def test_validate_inactive_user_without_detail(self, client, hub, make_user, module):
        """Test a deactivated user's token is refused without detail."""
        user = make_user(module_access=['compras'])
        token = await login(client, user.email, USER_PASSWORD)
        resp = await client.post(
            '/api/sso/generate-token',
            json={'moduleId': module.id},
            headers=bearer(token),
        )
        grant = await resp.json()
        hub.users.deactivate_user(user.id)

        resp = await client.post('/sso/validate-token', json={
            'token': grant['token'],
            'moduleId': module.id,
        })

        assert resp.status == 401
        assert await resp.json() == {'valid': False}

    async def test_validate_storage_failure(self, client, hub, module, monkeypatch):
        """Test a redemption that cannot be recorded answers 503 and stays unspent."""
        token = await login(client)
        resp = await client.post(
            '/api/sso/generate-token',
            json={'moduleId': module.id},
            headers=bearer(token),
        )
        grant = await resp.json()

        def unavailable(*args, **kwargs):
            raise StorageUnavailable('Storage lock timed out')

        monkeypatch.setattr(hub.sso.store, 'claim_sso_token', unavailable)
        resp = await client.post('/sso/validate-token', json={
            'token': grant['token'],
            'moduleId': module.id,
        })

        assert resp.status == 503
        assert await resp.json() == {'valid': False}
        monkeypatch.undo()
        assert hub.store.get_sso_token(grant['token']).used_at is None


class TestAdminUsers:
    """Test user administration endpoints."""

    async def test_viewer_forbidden(self, client, make_user):
        """Test a viewer cannot list users."""
        user = make_user()
        token = await login(client, user.email, USER_PASSWORD)

        resp = await client.get('/api/admin/users', headers=bearer(token))

        assert resp.status == 403

    async def test_create_update_delete(self, client):
        """Test the user lifecycle through the admin endpoints."""
        token = await login(client)

        resp = await client.post('/api/admin/users', headers=bearer(token), json={
            'email': 'new@neoloc.test',
            'password': 'secret-password',
            'fullName': 'New User',
            'role': 'operator',
            'moduleAccess': ['estoque'],
        })
        created = await resp.json()
        assert resp.status == 201
        assert created['role'] == 'operator'
        assert created['moduleAccess'] == ['estoque']

        resp = await client.put(
            f"/api/admin/users/{created['id']}",
            headers=bearer(token),
            json={'fullName': 'Renamed', 'isActive': False},
        )
        updated = await resp.json()
        assert resp.status == 200
        assert updated['fullName'] == 'Renamed'
        assert updated['isActive'] is False

        resp = await client.delete(f"/api/admin/users/{created['id']}", headers=bearer(token))
        assert resp.status == 200

        resp = await client.delete(f"/api/admin/users/{created['id']}", headers=bearer(token))
        assert resp.status == 404

    async def test_list_users(self, client, make_user):
        """Test the user list never exposes password hashes."""
        make_user()
        token = await login(client)

        resp = await client.get('/api/admin/users', headers=bearer(token))
        users = await resp.json()

        assert resp.status == 200
        assert len(users) == 2
        assert all('passwordHash' not in u for u in users)

    async def test_duplicate_email(self, client):
        """Test creating a user with a taken email."""
        token = await login(client)

        resp = await client.post('/api/admin/users', headers=bearer(token), json={
            'email': ADMIN_EMAIL,
            'password': 'secret-password',
            'fullName': 'Copy',
        })

        assert resp.status == 409

    async def test_unknown_primary_role(self, client):
        """Test creating a user with an unknown primary role."""
        token = await login(client)

        resp = await client.post('/api/admin/users', headers=bearer(token), json={
            'email': 'new@neoloc.test',
            'password': 'secret-password',
            'fullName': 'New User',
            'role': 'overlord',
        })

        assert resp.status == 400

    async def test_cannot_delete_self(self, client, admin):
        """Test an administrator cannot delete their own account."""
        token = await login(client)

        resp = await client.delete(f'/api/admin/users/{admin.id}', headers=bearer(token))

        assert resp.status == 400

    async def test_assign_and_remove_role(self, client, hub, make_user):
        """Test assigning and removing a user role."""
        user = make_user()
        role = hub.rbac.get_role_by_name('operator')
        token = await login(client)

        resp = await client.post(
            f'/api/admin/users/{user.id}/roles',
            headers=bearer(token),
            json={'roleId': role.id},
        )
        assert resp.status == 201
        assert [r.name for r in hub.rbac.get_user_roles(user.id)] == ['operator']

        resp = await client.delete(f'/api/admin/users/{user.id}/roles/{role.id}', headers=bearer(token))
        assert resp.status == 200
        assert await resp.json() == {'removed': True}
        assert hub.rbac.get_user_roles(user.id) == []

    async def test_assign_unknown_role(self, client, make_user):
        """Test assigning a role that does not exist."""
        user = make_user()
        token = await login(client)

        resp = await client.post(
            f'/api/admin/users/{user.id}/roles',
            headers=bearer(token),
            json={'roleId': 'missing'},
        )

        assert resp.status == 404


class TestAdminRoles:
    """Test role and permission administration endpoints."""

    async def test_list_roles(self, client):
        """Test the role list holds the system roles."""
        token = await login(client)

        resp = await client.get('/api/admin/roles', headers=bearer(token))
        roles = await resp.json()

        assert resp.status == 200
        assert {r['name'] for r in roles} == {'administrator', 'manager', 'operator', 'viewer'}

    async def test_create_and_delete_role(self, client, hub):
        """Test the custom role lifecycle with a permission edge."""
        token = await login(client)

        resp = await client.post('/api/admin/roles', headers=bearer(token), json={
            'name': 'auditor',
            'displayName': 'Auditor',
        })
        role = await resp.json()
        assert resp.status == 201
        assert role['isSystem'] is False

        permission = hub.rbac.get_permission_by_name('financeiro.read')
        resp = await client.post(
            f"/api/admin/roles/{role['id']}/permissions",
            headers=bearer(token),
            json={'permissionId': permission.id},
        )
        assert resp.status == 201
        assert [p.name for p in hub.rbac.get_role_permissions(role['id'])] == ['financeiro.read']

        resp = await client.delete(
            f"/api/admin/roles/{role['id']}/permissions/{permission.id}",
            headers=bearer(token),
        )
        assert await resp.json() == {'removed': True}

        resp = await client.delete(f"/api/admin/roles/{role['id']}", headers=bearer(token))
        assert resp.status == 200
        assert hub.rbac.get_role(role['id']) is None

    async def test_duplicate_role(self, client):
        """Test creating a role with a taken name."""
        token = await login(client)

        resp = await client.post('/api/admin/roles', headers=bearer(token), json={
            'name': 'viewer',
            'displayName': 'Viewer again',
        })

        assert resp.status == 409

    async def test_delete_system_role(self, client, hub):
        """Test system roles cannot be deleted."""
        token = await login(client)
        viewer = hub.rbac.get_role_by_name('viewer')

        resp = await client.delete(f'/api/admin/roles/{viewer.id}', headers=bearer(token))

        assert resp.status == 400
        assert hub.rbac.get_role(viewer.id) is not None

    async def test_delete_missing_role(self, client):
        """Test deleting an unknown role."""
        token = await login(client)

        resp = await client.delete('/api/admin/roles/missing', headers=bearer(token))

        assert resp.status == 404

    async def test_list_permissions(self, client, hub):
        """Test the permission catalogue endpoint."""
        token = await login(client)

        resp = await client.get('/api/admin/permissions', headers=bearer(token))

        assert resp.status == 200
        assert len(await resp.json()) == len(hub.rbac.list_permissions())


class TestDashboard:
    async def test_stats(self, client, make_user):
        """Test dashboard statistics."""
        make_user(role='manager')
        token = await login(client)

        resp = await client.get('/api/dashboard/stats', headers=bearer(token))
        stats = await resp.json()

        assert resp.status == 200
        assert stats['totalUsers'] == 2
        assert stats['activeUsers'] == 2
        assert stats['totalModules'] == 9
        assert stats['usersByRole']['administrator'] == 1
        assert stats['usersByRole']['manager'] == 1


class TestAdministratorGuard:
    """Test that only a super-admin can hand out or take away administrator."""

    async def test_delegate_can_manage_users(self, client, user_admin):
        """Test the delegated role still administers ordinary accounts."""
        token = await login(client, user_admin.email, USER_PASSWORD)

        resp = await client.post('/api/admin/users', headers=bearer(token), json={
            'email': 'new@neoloc.test',
            'password': 'secret-password',
            'fullName': 'New User',
            'role': 'operator',
        })

        assert resp.status == 201

    async def test_delegate_cannot_promote_self(self, client, hub, user_admin):
        """Test a user manager cannot make their own account administrator."""
        token = await login(client, user_admin.email, USER_PASSWORD)

        resp = await client.put(
            f'/api/admin/users/{user_admin.id}',
            headers=bearer(token),
            json={'role': 'administrator'},
        )

        assert resp.status == 403
        promoted = hub.users.get_user(user_admin.id)
        assert promoted.role == 'manager'
        assert hub.authorization.has_permission(promoted, 'system.roles', 'delete') is False

    async def test_delegate_cannot_promote_others(self, client, hub, user_admin, make_user):
        """Test a user manager cannot make another account administrator."""
        other = make_user()
        token = await login(client, user_admin.email, USER_PASSWORD)

        resp = await client.put(
            f'/api/admin/users/{other.id}',
            headers=bearer(token),
            json={'role': 'administrator'},
        )

        assert resp.status == 403
        assert hub.users.get_user(other.id).role == 'viewer'

    async def test_delegate_cannot_create_administrator(self, client, hub, user_admin):
        """Test a user manager cannot create an administrator account."""
        token = await login(client, user_admin.email, USER_PASSWORD)

        resp = await client.post('/api/admin/users', headers=bearer(token), json={
            'email': 'root@neoloc.test',
            'password': 'secret-password',
            'fullName': 'Root',
            'role': 'administrator',
        })

        assert resp.status == 403
        assert hub.users.get_user_by_email('root@neoloc.test') is None

    async def test_delegate_cannot_touch_administrator(self, client, hub, admin, user_admin):
        """Test a user manager can neither demote, deactivate nor delete an administrator."""
        token = await login(client, user_admin.email, USER_PASSWORD)

        resp = await client.put(
            f'/api/admin/users/{admin.id}',
            headers=bearer(token),
            json={'role': 'viewer'},
        )
        assert resp.status == 403

        resp = await client.put(
            f'/api/admin/users/{admin.id}',
            headers=bearer(token),
            json={'isActive': False},
        )
        assert resp.status == 403

        resp = await client.delete(f'/api/admin/users/{admin.id}', headers=bearer(token))
        assert resp.status == 403

        assert hub.users.get_user(admin.id).role == 'administrator'
        assert hub.users.get_user(admin.id).is_active is True

    async def test_delegate_cannot_assign_administrator_role(self, client, hub, user_admin):
        """Test a user manager cannot attach the administrator RBAC role."""
        administrator = hub.rbac.get_role_by_name('administrator')
        token = await login(client, user_admin.email, USER_PASSWORD)

        resp = await client.post(
            f'/api/admin/users/{user_admin.id}/roles',
            headers=bearer(token),
            json={'roleId': administrator.id},
        )

        assert resp.status == 403
        assert 'administrator' not in [r.name for r in hub.rbac.get_user_roles(user_admin.id)]

    async def test_super_admin_can_promote(self, client, hub, make_user):
        """Test the administrator may still grant the administrator role."""
        user = make_user()
        token = await login(client)

        resp = await client.put(
            f'/api/admin/users/{user.id}',
            headers=bearer(token),
            json={'role': 'administrator'},
        )

        assert resp.status == 200
        assert hub.users.get_user(user.id).role == 'administrator'
