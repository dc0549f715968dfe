"""End-to-end gameplay through the engine's content and commands."""

import pytest

from core.commands import ERR_LOCKED, ERR_NOT_FOUND
from core.engine import BASE_DIR, Engine


@pytest.fixture
def engine():
    eng = Engine(BASE_DIR / "config" / "neoncloud.yaml")
    eng.config["engine"]["time_scale"] = 0.0
    eng.load_content()
    return eng


async def _player(engine, name="neo"):
    player = await engine.create_player(name)
    player.notices = []

    async def send(text):
        player.notices.append(text)

    player.send = send
    return player


def _text(result):
    return "\n".join(result.lines)


async def _run(player, *lines):
    result = None
    for line in lines:
        result = await player.execute(line)
        await player.queue.wait_idle()
    return result


class TestNewAgent:
    @pytest.mark.asyncio
    async def test_starts_on_first_mission_with_mail(self, engine):
        player = await _player(engine)
        assert player.missions.current_mission_id == "welcome-00"
        assert player.mailbox.delivered == ["email-welcome-001"]
        assert player.cwd == "/home/neoncloud-user"
        assert player.wallet.balance == 0

    @pytest.mark.asyncio
    async def test_unknown_and_locked_commands(self, engine):
        player = await _player(engine)
        result = await player.execute("hackerman")
        assert result.error == ERR_NOT_FOUND
        result = await player.execute("ping localhost")
        assert result.error == ERR_LOCKED

    @pytest.mark.asyncio
    async def test_welcome_mission(self, engine):
        player = await _player(engine)
        result = await _run(player, "mail read 1")
        assert result.success
        assert "Welcome to NeonCloud" in _text(result)
        assert player.missions.is_completed("welcome-00")
        assert player.missions.current_mission_id == "tutorial-01"
        # 2 tasks + 25 NC with every bonus
        assert player.wallet.balance == 20 + 59
        assert player.fs.is_file("/home/neoncloud-user/Downloads/welcome-package.enc")

        await _run(player, "mail read 1")
        assert player.wallet.balance == 20 + 59

    @pytest.mark.asyncio
    async def test_next_mission_timer_not_started_by_previous_command(self, engine):
        player = await _player(engine)
        await _run(player, "mail", "mail read 1")
        assert player.missions.current_mission_id == "tutorial-01"
        assert player.missions.mission_start_time is None
        assert player.missions.progress("tutorial-01") == (0, 3)

        await _run(player, "ls")
        assert player.missions.mission_start_time is not None

    @pytest.mark.asyncio
    async def test_tutorial_unlocks_network_commands(self, engine):
        player = await _player(engine)
        await _run(player, "mail read 1", "ls", "cd Documents", "cat README.txt")
        assert player.missions.is_completed("tutorial-01")
        assert {"ping", "traceroute", "nslookup"} <= player.unlocked_commands
        assert player.wallet.balance == 79 + 30 + 117
        assert any("New commands unlocked" in n for n in player.notices)
        assert player.missions.current_mission_id == "network-01"

        result = await _run(player, "ping localhost")
        assert result.success
        assert player.missions.progress("network-01") == (1, 3)

    @pytest.mark.asyncio
    async def test_wrong_file_does_not_complete_task(self, engine):
        player = await _player(engine)
        await _run(player, "mail read 1", "cd Documents", "cat mission-01.txt")
        assert player.missions.progress("tutorial-01") == (1, 3)


class TestFiles:
    @pytest.mark.asyncio
    async def test_navigation(self, engine):
        player = await _player(engine)
        assert (await player.execute("pwd")).output == "/home/neoncloud-user"
        result = await player.execute("cd nowhere")
        assert not result.success
        assert "No such file or directory" in _text(result)
        result = await player.execute("cd Documents/README.txt")
        assert "Not a directory" in _text(result)
        result = await player.execute("ls -a")
        assert ".hidden/" in _text(result)
        await player.execute("cd")
        assert player.cwd == "/home/neoncloud-user"

    @pytest.mark.asyncio
    async def test_cat_encrypted(self, engine):
        player = await _player(engine)
        await _run(player, "mail read 1")
        result = await player.execute("cat ~/Downloads/welcome-package.enc")
        assert result.success
        assert "[encrypted]" in _text(result)
        assert "Welcome Package" not in _text(result)
        assert result.educational


class TestStore:
    @pytest.mark.asyncio
    async def test_purchase(self, engine):
        player = await _player(engine)
        player.wallet.credit(250, "test")
        result = await player.execute("store buy vpn-basic")
        assert result.success
        assert player.has_item("vpn-basic")
        assert "vpn" in player.unlocked_commands
        assert player.wallet.balance == 50

        again = await player.execute("store buy vpn-basic")
        assert not again.success
        assert "already own" in _text(again)

    @pytest.mark.asyncio
    async def test_purchase_refused(self, engine):
        player = await _player(engine)
        result = await player.execute("store buy vpn-basic")
        assert "Insufficient funds" in _text(result)
        player.wallet.credit(1000, "test")
        result = await player.execute("store buy log-shredder")
        assert "requires completing" in _text(result)
        result = await player.execute("store buy warez")
        assert "No such item" in _text(result)
        assert player.inventory == []


class TestRemote:
    @pytest.mark.asyncio
    async def test_connect_requires_vpn_and_credentials(self, engine):
        player = await _player(engine)
        player.unlock("connect", "disconnect", "vpn")
        result = await _run(player, "connect server-01")
        assert "VPN" in _text(result)

        player.inventory.append("vpn-basic")
        await _run(player, "vpn connect")
        assert player.vpn_connected
        assert player.vpn_type == "basic"

        result = await _run(player, "connect server-01")
        assert "Permission denied" in _text(result)
        result = await _run(player, "connect admin@server-01 wrong")
        assert "Permission denied" in _text(result)
        assert player.current_server is None

        result = await _run(player, "connect admin@server-01 cyberpass123")
        assert result.success
        assert player.current_server == "server-01"
        assert player.cwd == "/home/admin"
        assert (await player.execute("whoami")).output == "admin"
        result = await player.execute("cat secret.txt")
        assert "LANTERN" in _text(result)

        result = await player.execute("disconnect")
        assert result.success
        assert player.current_server is None
        assert player.cwd == "/home/neoncloud-user"

    @pytest.mark.asyncio
    async def test_vpn_drop_closes_private_session(self, engine):
        player = await _player(engine)
        player.unlock("connect", "vpn")
        player.known_credentials["server-02"] = "admin"
        await _run(player, "vpn", "connect server-02")
        assert player.current_server == "server-02"
        result = await player.execute("vpn disconnect")
        assert result.success
        assert player.current_server is None

    @pytest.mark.asyncio
    async def test_crack_records_credentials(self, engine):
        player = await _player(engine)
        player.unlock("crack")
        player.inventory.append("password-cracker-basic")
        player.fs.write("/home/neoncloud-user/Downloads/server-01-credentials.enc",
                        "admin / cyberpass123", encrypted=True, unlocks="server-01")
        result = await _run(player, "crack ~/Downloads/server-01-credentials.enc")
        assert result.success
        assert player.fs.read("/home/neoncloud-user/Downloads/server-01-credentials.txt") \
            .content == "admin / cyberpass123"
        assert player.known_credentials["server-01"] == "admin"

    @pytest.mark.asyncio
    async def test_advanced_cipher_needs_premium(self, engine):
        player = await _player(engine)
        player.unlock("crack")
        player.inventory.append("password-cracker-basic")
        player.fs.write("/tmp/hard.enc", "x", encrypted=True, cipher="advanced")
        result = await player.execute("crack /tmp/hard.enc")
        assert "Advanced Password Cracker" in _text(result)

    @pytest.mark.asyncio
    async def test_diagnostics(self, engine):
        player = await _player(engine)
        player.unlock("ping", "traceroute", "nslookup")
        result = await player.execute("ping server-01")
        assert not result.success
        assert "100.0% packet loss" in _text(result)
        result = await player.execute("traceroute server-01")
        assert "* * *" in _text(result)
        result = await player.execute("nslookup example.com MX")
        assert "mail exchanger = 10 mail.example.com" in _text(result)
        result = await player.execute("nslookup nowhere.invalid")
        assert "NXDOMAIN" in _text(result)

    @pytest.mark.asyncio
    async def test_scan_discovers_hosts(self, engine):
        player = await _player(engine)
        player.unlock("scan")
        await _run(player, "scan 192.168.1.0/24")
        assert {"server-01", "server-02", "megacorp-gateway"} <= player.discovered_hosts
        assert any("host(s) up" in n for n in player.notices)


class TestPersistence:
    @pytest.mark.asyncio
    async def test_save_and_restore(self, engine):
        player = await _player(engine)
        await _run(player, "mail read 1", "save")
        assert "neo" in engine.snapshots

        await _run(player, "ls")
        assert player.missions.progress("tutorial-01") == (1, 3)
        result = await player.execute("load")
        assert result.success
        assert player.missions.progress("tutorial-01") == (0, 3)
        assert player.wallet.balance == 79

        again = await _player(engine)
        assert again.missions.is_completed("welcome-00")
        assert again.missions.current_mission_id == "tutorial-01"
        assert again.mailbox.read == {"email-welcome-001"}

    @pytest.mark.asyncio
    async def test_load_without_save(self, engine):
        player = await _player(engine)
        result = await player.execute("load")
        assert "No saved progress" in _text(result)
