from tablesync.channels import RedisChannel, WebSocketChannel
from tablesync.service import build_channel, build_service
from tablesync.settings import Settings


def make_settings(**env):
    return Settings(_env_file=None, **env)


def test_settings_defaults():
    settings = make_settings()
    assert settings.api_url == "http://localhost:5000/api/v1"
    assert settings.debounce_seconds == 0.4
    assert settings.staff_context is True
    assert make_settings(TABLE_ID=4).staff_context is False


def test_staff_websocket_channel():
    channel = build_channel(make_settings(TENANT_ID=3, API_TOKEN="secret", WS_URL="ws://bridge"))
    assert isinstance(channel, WebSocketChannel)
    assert channel.url == "ws://bridge/ws/tenant/3?token=secret"
    assert channel.token == "secret"


def test_table_websocket_channel():
    channel = build_channel(make_settings(TABLE_ID=4, TABLE_TOKEN="tbl-token", WS_URL="ws://bridge"))
    assert isinstance(channel, WebSocketChannel)
    assert channel.url == "ws://bridge/ws/table/tbl-token"


def test_redis_channels():
    staff = build_channel(make_settings(PUSH_TRANSPORT="redis", TENANT_ID=3))
    table = build_channel(make_settings(PUSH_TRANSPORT="redis", TENANT_ID=3, TABLE_ID=4))
    assert isinstance(staff, RedisChannel)
    assert staff.patterns == ["orders:tenant:3"]
    assert table.patterns == ["orders:table:4"]


def test_unconfigured_channel():
    assert build_channel(make_settings()) is None


def test_build_service_uses_context():
    service = build_service(make_settings(TABLE_ID=4, RESTAURANT_ID=9, DEBOUNCE_MS=250))
    assert service.controller.table_id == 4
    assert service.controller.channel is None
    assert service.engine.restaurant_id == 9
    assert service.editor.debounce_seconds == 0.25
    assert service.controller.active_order_fetch_limit == 1000
