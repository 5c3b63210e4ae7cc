"""Tests for the PM2 and fail2ban endpoints, with host commands faked."""

import json

import pytest

from tests.conftest import bearer
from vpsctl.services.vps import BanManager, CommandResult, ProcessSupervisor

PM2_LIST = [
    {
        "name": "api",
        "pid": 4242,
        "monit": {"memory": 52428800, "cpu": 1.5},
        "pm2_env": {
            "status": "online",
            "pm_cwd": "/srv/api",
            "namespace": "web",
            "pm_uptime": 1700000000000,
        },
    },
    {
        "name": "worker",
        "pid": 0,
        "monit": {"memory": 0, "cpu": 0},
        "pm2_env": {"status": "stopped", "pm_cwd": "/srv/worker", "namespace": "jobs"},
    },
]

F2B_STATUS = "Status\n|- Number of jail:\t2\n`- Jail list:\tsshd, nginx-http-auth\n"

F2B_JAIL = (
    "Status for the jail: sshd\n"
    "|- Filter\n"
    "|  |- Currently failed:\t3\n"
    "|  |- Total failed:\t120\n"
    "|  `- File list:\t/var/log/auth.log\n"
    "`- Actions\n"
    "   |- Currently banned:\t2\n"
    "   |- Total banned:\t17\n"
    "   `- Banned IP list:\t203.0.113.5 2001:db8::1\n"
)


class FakeRunner:
    """Returns canned results keyed by argument prefix and records every call."""

    def __init__(self):
        self.calls: list[tuple[str, ...]] = []
        self.responses: dict[tuple[str, ...], CommandResult] = {}

    def respond(self, *args: str, stdout: str = "", stderr: str = "", returncode: int = 0):
        self.responses[args] = CommandResult(returncode=returncode, stdout=stdout, stderr=stderr)

    async def run(self, *args: str) -> CommandResult:
        self.calls.append(args)
        for length in range(len(args), 0, -1):
            result = self.responses.get(args[:length])
            if result is not None:
                return result
        return CommandResult(returncode=0, stdout="", stderr="")


@pytest.fixture
def runner(app) -> FakeRunner:
    fake = FakeRunner()
    fake.respond("pm2", "jlist", stdout=json.dumps(PM2_LIST))
    fake.respond("fail2ban-client", "status", stdout=F2B_STATUS)
    fake.respond("fail2ban-client", "status", "sshd", stdout=F2B_JAIL)
    app.state.process_supervisor = ProcessSupervisor(fake, "pm2")
    app.state.ban_manager = BanManager(fake, use_sudo=False)
    return fake


class TestAuthentication:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("GET", "/api/vps/pm2/processes/basic"),
            ("GET", "/api/vps/pm2/processes/full"),
            ("POST", "/api/vps/pm2/api/restart"),
            ("GET", "/api/vps/fail2ban/status"),
            ("POST", "/api/vps/fail2ban/unban"),
        ],
    )
    async def test_requires_session(self, client, runner, method, path):
        response = await client.request(method, path)

        assert response.status_code == 401
        assert response.json()["code"] == "AUTHENTICATION_REQUIRED"
        assert runner.calls == []


class TestPM2Listing:
    @pytest.mark.asyncio
    async def test_basic_grouped_by_namespace(self, client, runner, viewer_token):
        response = await client.get("/api/vps/pm2/processes/basic", headers=bearer(viewer_token))

        assert response.status_code == 200
        assert response.json() == {
            "web": [{"name": "api", "pid": 4242, "active": True}],
            "jobs": [{"name": "worker", "pid": 0, "active": False}],
        }

    @pytest.mark.asyncio
    async def test_cwd_listing(self, client, runner, admin_token):
        response = await client.get("/api/vps/pm2/processes/cwd", headers=bearer(admin_token))

        assert response.status_code == 200
        assert response.json()["jobs"] == [
            {"name": "worker", "pid": 0, "active": False, "cwd": "/srv/worker"}
        ]

    @pytest.mark.asyncio
    async def test_full_listing(self, client, runner, admin_token):
        response = await client.get("/api/vps/pm2/processes/full", headers=bearer(admin_token))

        assert response.status_code == 200
        (api,) = response.json()["web"]
        assert api["mem"] == 50.0
        assert api["cpu"] == 1.5
        assert api["cwd"] == "/srv/api"
        assert api["started_at"].startswith("2023-11-14T22:13:20")

        (worker,) = response.json()["jobs"]
        assert worker["started_at"] == ""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/api/vps/pm2/processes/cwd", "/api/vps/pm2/processes/full"])
    async def test_detailed_listing_requires_permission(self, client, runner, viewer_token, path):
        response = await client.get(path, headers=bearer(viewer_token))

        assert response.status_code == 403
        assert response.json()["code"] == "ACTION_NOT_ALLOWED"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_pm2_failure(self, client, runner, admin_token):
        runner.respond("pm2", "jlist", stderr="daemon not running", returncode=1)

        response = await client.get("/api/vps/pm2/processes/basic", headers=bearer(admin_token))

        assert response.status_code == 500
        assert response.json() == {
            "code": "COMMAND_EXECUTION_ERROR",
            "message": "Command execution failed",
        }


class TestPM2Control:
    @pytest.mark.asyncio
    async def test_restart_by_name(self, client, runner, admin_token):
        response = await client.post("/api/vps/pm2/api/restart", headers=bearer(admin_token))

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "action": "restart",
            "target": "api",
            "message": "process restarted successfully",
        }
        assert runner.calls[-1] == ("pm2", "restart", "api")

    @pytest.mark.asyncio
    async def test_stop_by_pid_uses_resolved_name(self, client, runner, admin_token):
        response = await client.post("/api/vps/pm2/4242/stop", headers=bearer(admin_token))

        assert response.status_code == 200
        assert response.json()["target"] == "api"
        assert runner.calls[-1] == ("pm2", "stop", "api")

    @pytest.mark.asyncio
    async def test_start_stopped_process(self, client, runner, admin_token):
        response = await client.post("/api/vps/pm2/worker/start", headers=bearer(admin_token))

        assert response.status_code == 200
        assert runner.calls[-1] == ("pm2", "start", "worker")

    @pytest.mark.asyncio
    async def test_start_running_process_conflicts(self, client, runner, admin_token):
        response = await client.post("/api/vps/pm2/api/start", headers=bearer(admin_token))

        assert response.status_code == 409
        assert response.json()["code"] == "PROCESS_ALREADY_RUNNING"
        assert ("pm2", "start", "api") not in runner.calls

    @pytest.mark.asyncio
    async def test_stop_stopped_process_conflicts(self, client, runner, admin_token):
        response = await client.post("/api/vps/pm2/worker/stop", headers=bearer(admin_token))

        assert response.status_code == 409
        assert response.json()["code"] == "PROCESS_ALREADY_STOPPED"

    @pytest.mark.asyncio
    async def test_unknown_process(self, client, runner, admin_token):
        response = await client.post("/api/vps/pm2/ghost/restart", headers=bearer(admin_token))

        assert response.status_code == 404
        assert response.json()["code"] == "PM2_PROCESS_NOT_FOUND"
        assert runner.calls == [("pm2", "jlist")]

    @pytest.mark.asyncio
    async def test_control_requires_permission(self, client, runner, viewer_token):
        response = await client.post("/api/vps/pm2/api/restart", headers=bearer(viewer_token))

        assert response.status_code == 403
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_action_failure(self, client, runner, admin_token):
        runner.respond("pm2", "restart", stderr="boom", returncode=1)

        response = await client.post("/api/vps/pm2/api/restart", headers=bearer(admin_token))

        assert response.status_code == 500
        assert response.json()["code"] == "COMMAND_EXECUTION_ERROR"


class TestFail2Ban:
    @pytest.mark.asyncio
    async def test_status(self, client, runner, viewer_token):
        response = await client.get("/api/vps/fail2ban/status", headers=bearer(viewer_token))

        assert response.status_code == 200
        assert response.json() == {"jail_count": 2, "jail_list": ["sshd", "nginx-http-auth"]}

    @pytest.mark.asyncio
    async def test_jail_details(self, client, runner, admin_token):
        response = await client.get("/api/vps/fail2ban/status/sshd", headers=bearer(admin_token))

        assert response.status_code == 200
        assert response.json() == {
            "jail_name": "sshd",
            "currently_failed": 3,
            "total_failed": 120,
            "currently_banned": 2,
            "total_banned": 17,
            "banned_ip_list": ["203.0.113.5", "2001:db8::1"],
        }

    @pytest.mark.asyncio
    async def test_jail_details_requires_permission(self, client, runner, viewer_token):
        response = await client.get("/api/vps/fail2ban/status/sshd", headers=bearer(viewer_token))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_jail(self, client, runner, admin_token):
        runner.respond(
            "fail2ban-client", "status", "nope", stderr="ERROR  NOK: ('nope',)\nDoes not exist",
            returncode=255,
        )

        response = await client.get("/api/vps/fail2ban/status/nope", headers=bearer(admin_token))

        assert response.status_code == 404
        assert response.json()["code"] == "FAIL2BAN_JAIL_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_jail_name_validated(self, client, runner, admin_token):
        response = await client.get(
            "/api/vps/fail2ban/status/bad;name", headers=bearer(admin_token)
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_unban(self, client, runner, admin_token):
        response = await client.post(
            "/api/vps/fail2ban/unban",
            json={"jail": "sshd", "ip": "203.0.113.5"},
            headers=bearer(admin_token),
        )

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "IP unbanned successfully"}
        assert runner.calls[-1] == ("fail2ban-client", "set", "sshd", "unbanip", "203.0.113.5")

    @pytest.mark.asyncio
    async def test_unban_ipv6_normalized(self, client, runner, admin_token):
        await client.post(
            "/api/vps/fail2ban/unban",
            json={"jail": "sshd", "ip": "2001:DB8:0:0::1"},
            headers=bearer(admin_token),
        )

        assert runner.calls[-1][-1] == "2001:db8::1"

    @pytest.mark.asyncio
    async def test_unban_not_banned(self, client, runner, admin_token):
        runner.respond(
            "fail2ban-client", "set", "sshd", "unbanip",
            stderr="198.51.100.7 is not banned", returncode=255,
        )

        response = await client.post(
            "/api/vps/fail2ban/unban",
            json={"jail": "sshd", "ip": "198.51.100.7"},
            headers=bearer(admin_token),
        )

        assert response.status_code == 404
        assert response.json()["code"] == "FAIL2BAN_IP_NOT_BANNED"

    @pytest.mark.asyncio
    async def test_unban_unknown_jail(self, client, runner, admin_token):
        runner.respond(
            "fail2ban-client", "set", "ghost", "unbanip",
            stderr="Jail not found", returncode=255,
        )

        response = await client.post(
            "/api/vps/fail2ban/unban",
            json={"jail": "ghost", "ip": "198.51.100.7"},
            headers=bearer(admin_token),
        )

        assert response.status_code == 404
        assert response.json()["code"] == "FAIL2BAN_JAIL_NOT_FOUND"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {"jail": "sshd", "ip": "not-an-ip"},
            {"jail": "sshd", "ip": "256.1.1.1"},
            {"jail": "ssh d", "ip": "203.0.113.5"},
            {"jail": "sshd"},
        ],
    )
    async def test_unban_validation(self, client, runner, admin_token, body):
        response = await client.post(
            "/api/vps/fail2ban/unban", json=body, headers=bearer(admin_token)
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_REQUEST"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_unban_requires_permission(self, client, runner, viewer_token):
        response = await client.post(
            "/api/vps/fail2ban/unban",
            json={"jail": "sshd", "ip": "203.0.113.5"},
            headers=bearer(viewer_token),
        )

        assert response.status_code == 403
        assert runner.calls == []
