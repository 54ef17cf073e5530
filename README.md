# ipmiexporter

A Prometheus exporter for IPMI devices. It runs the FreeIPMI command-line
tools (`ipmimonitoring`, `ipmi-dcmi`, `bmc-info`, `ipmi-chassis`, `ipmi-sel`,
`bmc-watchdog`, `ipmi-raw`), parses their output and serves the results in
the Prometheus text exposition format.

It can scrape the local machine's BMC, and it can act as a proxy for remote
BMCs reached over the network, in the style of the Prometheus "multi-target
exporter" pattern.

## Requirements

- Python 3.10 or later on a POSIX system: the FreeIPMI configuration is
  handed to each tool through a named pipe.
- FreeIPMI installed, either on `$PATH` or in a directory given with
  `--freeipmi.path`.

## Installation

```
pip install ipmiexporter
```

## Running

```
ipmi-exporter --config.file ipmi.yml
```

Options:

- `--config.file PATH` – YAML configuration file. Without one, the built-in
  defaults are used, which suits scraping the local machine.
- `--freeipmi.path DIR` – directory holding the FreeIPMI executables.
  Relative collector commands are joined to it; by default `$PATH` is
  searched.
- `--web.listen-address ADDR` – address to listen on, `:9290` by default.
  An empty host part listens on all interfaces.
- `--log.level LEVEL` – one of `debug`, `info`, `warn`, `error`
  (default `info`).

The command exits with status 1 if the configuration file cannot be read or
parsed at start-up, or if the listen address cannot be used.

Endpoints:

| Path         | Purpose                                                              |
|--------------|----------------------------------------------------------------------|
| `/metrics`   | Metrics for the local IPMI device, using the `default` module.       |
| `/ipmi`      | Scrape a remote device: `/ipmi?target=10.0.0.5&module=default`.     |
| `/-/reload`  | `POST` here to reload the configuration file.                        |
| any other    | A small landing page with a form for remote scrapes.                 |

`/ipmi` answers 400 when `target` is missing or when the requested module
(default `default`) is not in the configuration. `/-/reload` answers 405 to
anything but `POST`, and 500 with the reason when the reload fails.

Sending `SIGHUP` to the process also reloads the configuration. If a reload
fails, the previous configuration stays in effect.

A Prometheus job for remote targets might look like this:

```yaml
scrape_configs:
  - job_name: ipmi
    metrics_path: /ipmi
    params:
      module: [default]
    static_configs:
      - targets: [10.0.0.5, 10.0.0.6]
    relabel_configs:
      - source_labels: [__address__]
        target_label: __param_target
      - source_labels: [__param_target]
        target_label: instance
      - target_label: __address__
        replacement: localhost:9290
```

## Configuration

The configuration file holds named modules. A scrape picks a module with the
`module` query parameter. For the local `/metrics` endpoint, the `default`
module is used if present, otherwise the built-in defaults.

```yaml
modules:
  default:
    user: admin
    pass: password
    privilege: user
    driver: LAN_2_0
    timeout: 10000
    collectors:
      - ipmi
      - dcmi
      - bmc
      - chassis
    exclude_sensor_ids:
      - 2
      - 29
  dell:
    user: admin
    pass: password
    collectors:
      - bmc
      - ipmi
      - sel
      - sel-events
      - bmc-watchdog
    workaround_flags:
      - authcap
    custom_args:
      ipmi:
        - --bridge-sensors
    sel_events:
      - name: correctable_memory_error
        regex: Correctable memory error.*
  supermicro:
    collectors:
      - sm-lan-mode
    collector_cmd:
      sm-lan-mode: sudo
    custom_args:
      sm-lan-mode:
        - ipmi-raw
```

Module keys:

- `user`, `pass`, `privilege`, `driver`, `timeout`, `workaround_flags` –
  written into the FreeIPMI configuration handed to each tool (`#` in the
  password is escaped).
- `collectors` – which collectors to run. Without this key a module runs
  `ipmi`, `dcmi`, `bmc` and `chassis`.
- `exclude_sensor_ids` – sensor numbers to leave out of the `ipmi` collector.
- `collector_cmd` – replace the command a collector runs.
- `default_args` – replace a collector's built-in arguments.
- `custom_args` – arguments placed before the collector's arguments; together
  with `collector_cmd` this makes it easy to run a tool through `sudo`.
- `sel_events` – named regular expressions searched for in SEL event
  descriptions by the `sel-events` collector.

Unknown keys, unknown collector names, invalid regular expressions and
malformed values are rejected with `ipmiexporter.config.ConfigError`.

## Collectors and metrics

| Collector      | Tool             | Metrics                                                                 |
|----------------|------------------|-------------------------------------------------------------------------|
| `ipmi`         | `ipmimonitoring` | `ipmi_sensor_*`, `ipmi_fan_speed_*`, `ipmi_temperature_*`, `ipmi_voltage_*`, `ipmi_current_*`, `ipmi_power_*` |
| `dcmi`         | `ipmi-dcmi`      | `ipmi_dcmi_power_consumption_watts` (only while measurement is active)  |
| `bmc`          | `bmc-info`       | `ipmi_bmc_info`                                                         |
| `bmc-watchdog` | `bmc-watchdog`   | `ipmi_bmc_watchdog_*`                                                   |
| `chassis`      | `ipmi-chassis`   | `ipmi_chassis_power_state`, `ipmi_chassis_drive_fault_state`, `ipmi_chassis_cooling_fault_state` |
| `sel`          | `ipmi-sel`       | `ipmi_sel_logs_count`, `ipmi_sel_free_space_bytes`                      |
| `sel-events`   | `ipmi-sel`       | `ipmi_sel_events_count_by_state`, `ipmi_sel_events_count_by_name`, `ipmi_sel_events_latest_timestamp` |
| `sm-lan-mode`  | `ipmi-raw`       | `ipmi_config_lan_mode` (Supermicro only)                                |

Every scrape also reports `ipmi_up{collector="..."}` for each collector that
ran (0 when it failed), and `ipmi_scrape_duration_seconds`.

## Using the parsers directly

The `ipmiexporter.freeipmi` module can be used on its own to run FreeIPMI
tools and read their output:

```python
from ipmiexporter import freeipmi

result = freeipmi.execute("ipmi-chassis", ["--get-chassis-status"], "", "")
print(freeipmi.get_chassis_power_state(result))  # 1.0 when powered on
```

Each `get_*` function raises `FreeIPMIError` when the tool failed or its
output could not be understood. `ipmiexporter.exporter.ExporterApp` and
`create_server` let the HTTP endpoints be embedded in another program.

## What it does not do

- It talks to devices only through the FreeIPMI tools; there is no
  in-process IPMI client.
- The HTTP server is plain HTTP: no TLS and no authentication.
- `/metrics` carries only the IPMI metrics above, no process or build
  information metrics. The landing page's "Config" link leads back to the
  landing page.

## Running the tests

```
pip install "ipmiexporter[test]"
pytest
```