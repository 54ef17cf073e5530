import os
import threading
import urllib.error
import urllib.request

import pytest

from ipmiexporter.config import SafeConfig, parse_config
from ipmiexporter.exporter import ExporterApp, MetaCollector, create_server, main
from ipmiexporter.freeipmi import FreeIPMIError, Result

CHASSIS_OUTPUT = (
    b"System Power                        : on\n"
    b"Power overload                      : false\n"
    b"Drive Fault                         : false\n"
    b"Cooling/fan fault                   : false\n"
)

CHASSIS_ONLY = "modules:\n  default:\n    collectors: [chassis]\n"
REMOTE_CONFIG = (
    "modules:\n"
    "  remote:\n"
    "    user: admin\n"
    "    pass: password\n"
    "    collectors: [chassis]\n"
)


class FakeRunner:
    def __init__(self, outputs):
        self.outputs = outputs
        self.calls = []

    def __call__(self, cmd, args, config, target):
        self.calls.append((cmd, list(args), config, target))
        return self.outputs.get(
            os.path.basename(cmd), Result(b"", FreeIPMIError("exit status 1"))
        )


def samples(metrics, fq_name, **labels):
    return [
        m
        for m in metrics
        if m.desc.fq_name == fq_name and all(m.labels.get(k) == v for k, v in labels.items())
    ]


def value(metrics, fq_name, **labels):
    found = samples(metrics, fq_name, **labels)
    assert len(found) == 1
    return found[0].value


def test_collect_reports_collector_metrics_and_up():
    config = SafeConfig(parse_config(CHASSIS_ONLY))
    runner = FakeRunner({"ipmi-chassis": Result(CHASSIS_OUTPUT)})
    metrics = MetaCollector("", "default", config, runner=runner).collect()
    assert value(metrics, "ipmi_chassis_power_state") == 1.0
    assert value(metrics, "ipmi_up", collector="chassis") == 1.0
    assert value(metrics, "ipmi_scrape_duration_seconds") >= 0.0


def test_failed_collector_is_marked_down():
    config = SafeConfig(parse_config(CHASSIS_ONLY))
    runner = FakeRunner({"ipmi-chassis": Result(b"boom", FreeIPMIError("exit status 1"))})
    metrics = MetaCollector("", "default", config, runner=runner).collect()
    assert value(metrics, "ipmi_up", collector="chassis") == 0.0
    assert samples(metrics, "ipmi_chassis_power_state") == []


def test_command_is_joined_with_executables_path():
    config = SafeConfig(parse_config(CHASSIS_ONLY))
    runner = FakeRunner({"ipmi-chassis": Result(CHASSIS_OUTPUT)})
    MetaCollector("", "default", config, "/opt/freeipmi/sbin", runner).collect()
    module = config.config_for_target("", "default")
    assert runner.calls == [
        ("/opt/freeipmi/sbin/ipmi-chassis", ["--get-chassis-status"], module.freeipmi_config(), "")
    ]


def test_absolute_command_and_custom_args_are_used():
    text = (
        "modules:\n"
        "  default:\n"
        "    collectors: [chassis]\n"
        "    collector_cmd:\n"
        "      chassis: /usr/bin/sudo\n"
        "    custom_args:\n"
        "      chassis: [ipmi-chassis]\n"
    )
    config = SafeConfig(parse_config(text))
    runner = FakeRunner({"sudo": Result(CHASSIS_OUTPUT)})
    metrics = MetaCollector("", "default", config, "/opt/freeipmi", runner).collect()
    cmd, args, _, _ = runner.calls[0]
    assert cmd == "/usr/bin/sudo"
    assert args == ["ipmi-chassis", "--get-chassis-status"]
    assert value(metrics, "ipmi_up", collector="chassis") == 1.0


def test_missing_module_falls_back_to_builtin_collectors():
    config = SafeConfig(parse_config(""))
    runner = FakeRunner({})
    metrics = MetaCollector("", "missing", config, runner=runner).collect()
    ups = samples(metrics, "ipmi_up")
    assert {m.labels["collector"] for m in ups} == {"ipmi", "dcmi", "bmc", "chassis"}
    assert all(m.value == 0.0 for m in ups)


def test_ipmi_endpoint_requires_target():
    app = ExporterApp(SafeConfig(parse_config(REMOTE_CONFIG)), runner=FakeRunner({}))
    status, _, body = app.handle("GET", "/ipmi", {})
    assert status == 400
    assert body == b"'target' parameter must be specified\n"


def test_ipmi_endpoint_rejects_unknown_module():
    app = ExporterApp(SafeConfig(parse_config(REMOTE_CONFIG)), runner=FakeRunner({}))
    status, _, body = app.handle("GET", "/ipmi", {"target": "bmc.example.com", "module": "nope"})
    assert status == 400
    assert b'Unknown module "nope"' in body


def test_ipmi_endpoint_scrapes_remote_target():
    runner = FakeRunner({"ipmi-chassis": Result(CHASSIS_OUTPUT)})
    config = SafeConfig(parse_config(REMOTE_CONFIG))
    app = ExporterApp(config, runner=runner)
    status, headers, body = app.handle(
        "GET", "/ipmi", {"target": "bmc.example.com", "module": "remote"}
    )
    assert status == 200
    assert headers["Content-Type"].startswith("text/plain")
    assert b'ipmi_up{collector="chassis"} 1\n' in body
    assert runner.calls[0][3] == "bmc.example.com"
    assert runner.calls[0][2] == config.config_for_target("", "remote").freeipmi_config()


def test_metrics_endpoint_scrapes_local_target():
    runner = FakeRunner({"ipmi-chassis": Result(CHASSIS_OUTPUT)})
    app = ExporterApp(SafeConfig(parse_config(CHASSIS_ONLY)), runner=runner)
    status, _, body = app.handle("GET", "/metrics", {})
    assert status == 200
    assert b"ipmi_chassis_power_state 1\n" in body
    assert runner.calls[0][3] == ""


def test_reload_requires_post():
    app = ExporterApp(runner=FakeRunner({}))
    status, headers, body = app.handle("GET", "/-/reload", {})
    assert status == 405
    assert headers["Allow"] == "POST"
    assert body == b"Only POST requests allowed\n"


def test_reload_loads_config_file(tmp_path):
    path = tmp_path / "ipmi.yml"
    path.write_text(REMOTE_CONFIG)
    app = ExporterApp(config_file=str(path), runner=FakeRunner({}))
    assert app.config.has_module("remote") is False
    status, _, _ = app.handle("POST", "/-/reload", {})
    assert status == 200
    assert app.config.has_module("remote") is True


def test_reload_failure_keeps_old_config(tmp_path):
    path = tmp_path / "ipmi.yml"
    path.write_text(REMOTE_CONFIG)
    app = ExporterApp(config_file=str(path), runner=FakeRunner({}))
    app.reload()
    path.write_text("bogus: 1\n")
    status, _, body = app.handle("POST", "/-/reload", {})
    assert status == 500
    assert body.startswith(b"failed to reload config: ")
    assert app.config.has_module("remote") is True


def test_index_page_is_served_for_other_paths():
    app = ExporterApp(runner=FakeRunner({}))
    status, headers, body = app.handle("GET", "/anything", {})
    assert status == 200
    assert headers["Content-Type"].startswith("text/html")
    assert b"<h1>IPMI Exporter</h1>" in body


@pytest.fixture
def served_app():
    runner = FakeRunner({"ipmi-chassis": Result(CHASSIS_OUTPUT)})
    app = ExporterApp(SafeConfig(parse_config(REMOTE_CONFIG)), runner=runner)
    server = create_server(("127.0.0.1", 0), app)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}", runner
    finally:
        server.shutdown()
        server.server_close()


def test_server_serves_remote_scrape(served_app):
    base, runner = served_app
    url = f"{base}/ipmi?target=bmc.example.com&module=remote"
    with urllib.request.urlopen(url) as response:
        body = response.read()
        assert response.status == 200
    assert b"ipmi_chassis_power_state 1\n" in body
    assert runner.calls[0][3] == "bmc.example.com"


def test_server_reports_missing_target(served_app):
    base, _ = served_app
    with pytest.raises(urllib.error.HTTPError) as excinfo:
        urllib.request.urlopen(f"{base}/ipmi?target=")
    assert excinfo.value.code == 400


def test_main_fails_on_missing_config(tmp_path):
    assert main(["--config.file", str(tmp_path / "missing.yml")]) == 1


def test_main_fails_on_invalid_config(tmp_path):
    path = tmp_path / "ipmi.yml"
    path.write_text("modules:\n  default:\n    collectors: [bogus]\n")
    assert main(["--config.file", str(path)]) == 1