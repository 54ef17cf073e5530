import math
import os
import sys

import pytest

from ipmiexporter import freeipmi
from ipmiexporter.freeipmi import FreeIPMIError, Result

DCMI_ACTIVE = b"""Current Power                        : 354 Watts
Minimum Power over sampling duration : 8 watts
Maximum Power over sampling duration : 512 watts
Power Measurement                    : Active
"""

DCMI_INACTIVE = b"""Current Power                        : 0 Watts
Power Measurement                    : Not Available
"""

CHASSIS = b"""System Power                        : on
Power overload                      : false
Drive Fault                         : false
Cooling/fan fault                   : true
"""

BMC_INFO = b"""Device ID         : 32
Firmware Revision : 1.71
Manufacturer ID   : Hewlett-Packard Enterprise (47196)
System Firmware Version : 2.20.0
BMC URL : https://bmc.example.com
"""

SEL_INFO = b"""SEL version                                      : 1.5
Number of log entries                            : 52
Free space remaining                             : 15520 bytes
"""

WATCHDOG = b"""Timer Use:                   BIOS FRB2
Timer:                       Running
Logging:                     Disabled
Timeout Action:              Hard Reset
Pre-Timeout Interrupt:       None
Pre-Timeout Interval:        10 seconds
Timer Use BIOS FRB2 Flag:    Clear
Initial Countdown:           300 seconds
Current Countdown:           290 seconds
"""

SENSORS = b"""1,CPU Temp,Temperature,Nominal,35.00,C,'OK'
2,Fan 1,Fan,Warning,N/A,RPM,'At or Below (<=) Lower Non-Critical Threshold'
3,PS Status,Power Supply,Nominal,N/A,N/A,'Presence detected'
"""

SEL_EVENTS = b"""1,Jan-02-2023,10:00:00,Sensor #1,Memory,Warning,Correctable memory error
3,PostInit,PostInit,Sensor #211,Memory,Critical,Correctable memory error ; Event Data3 = 34h
garbage line
"""

FAILED = Result(b"boom", FreeIPMIError("error running tool: exit status 1"))


def test_escape_password():
    password = "password"
    assert freeipmi.escape_password(password + "#" + password) == password + "\\#" + password
    assert freeipmi.escape_password(password) == password


def test_power_consumption_active():
    assert freeipmi.get_current_power_consumption(Result(DCMI_ACTIVE)) == 354.0


def test_power_consumption_not_available():
    assert freeipmi.get_current_power_consumption(Result(DCMI_INACTIVE)) == -1.0


def test_power_consumption_missing_line():
    with pytest.raises(FreeIPMIError, match="could not find value"):
        freeipmi.get_current_power_consumption(Result(b"nothing here\n"))


def test_chassis_states():
    result = Result(CHASSIS)
    assert freeipmi.get_chassis_power_state(result) == 1.0
    assert freeipmi.get_chassis_drive_fault(result) == 1.0
    assert freeipmi.get_chassis_cooling_fault(result) == 0.0


def test_chassis_power_off():
    assert freeipmi.get_chassis_power_state(Result(b"System Power : off\n")) == 0.0


def test_failed_result_raises_with_output():
    with pytest.raises(FreeIPMIError, match="exit status 1: boom"):
        freeipmi.get_chassis_power_state(FAILED)


def test_bmc_info():
    result = Result(BMC_INFO)
    assert freeipmi.get_bmc_info_firmware_revision(result) == "1.71"
    assert freeipmi.get_bmc_info_manufacturer_id(result) == "Hewlett-Packard Enterprise (47196)"
    assert freeipmi.get_bmc_info_system_firmware_version(result) == "2.20.0"
    assert freeipmi.get_bmc_info_bmc_url(result) == "https://bmc.example.com"


def test_bmc_info_recovers_from_failed_command():
    result = Result(BMC_INFO, FreeIPMIError("partial failure"))
    assert freeipmi.get_bmc_info_firmware_revision(result) == "1.71"
    with pytest.raises(FreeIPMIError, match="partial failure"):
        freeipmi.get_bmc_info_system_firmware_version(result)


def test_bmc_info_failed_without_output_raises_original_error():
    with pytest.raises(FreeIPMIError, match="exit status 1"):
        freeipmi.get_bmc_info_manufacturer_id(FAILED)


def test_bmc_info_missing_value_without_error():
    with pytest.raises(FreeIPMIError, match="could not find value"):
        freeipmi.get_bmc_info_bmc_url(Result(b"Firmware Revision : 1.0\n"))


def test_sel_info():
    result = Result(SEL_INFO)
    assert freeipmi.get_sel_info_entries_count(result) == 52.0
    assert freeipmi.get_sel_info_free_space(result) == 15520.0


def test_raw_octets():
    assert freeipmi.get_raw_octets(Result(b"rcvd: 0C 00 01\r\n")) == ["0C", "00", "01"]


def test_raw_octets_unexpected():
    with pytest.raises(FreeIPMIError, match="unexpected raw response"):
        freeipmi.get_raw_octets(Result(b"sent: 00\n"))


def test_watchdog():
    result = Result(WATCHDOG)
    assert freeipmi.get_bmc_watchdog_timer_state(result) == 1.0
    assert freeipmi.get_bmc_watchdog_timer_use(result) == "BIOS FRB2"
    assert freeipmi.get_bmc_watchdog_logging_state(result) == 0.0
    assert freeipmi.get_bmc_watchdog_timeout_action(result) == "Hard Reset"
    assert freeipmi.get_bmc_watchdog_pretimeout_interrupt(result) == "None"
    assert freeipmi.get_bmc_watchdog_pretimeout_interval(result) == 10.0
    assert freeipmi.get_bmc_watchdog_initial_countdown(result) == 300.0
    assert freeipmi.get_bmc_watchdog_current_countdown(result) == 290.0


def test_watchdog_bad_number():
    with pytest.raises(FreeIPMIError):
        freeipmi.get_bmc_watchdog_initial_countdown(Result(b"Initial Countdown: 1.2.3 seconds\n"))


def test_sensor_data():
    sensors = freeipmi.get_sensor_data(Result(SENSORS), [])
    assert [s.id for s in sensors] == [1, 2, 3]
    first = sensors[0]
    assert (first.name, first.type, first.state, first.value, first.unit, first.event) == (
        "CPU Temp",
        "Temperature",
        "Nominal",
        35.0,
        "C",
        "OK",
    )
    assert math.isnan(sensors[1].value)
    assert sensors[2].unit == "N/A"


def test_sensor_data_excludes_ids():
    sensors = freeipmi.get_sensor_data(Result(SENSORS), [2])
    assert [s.id for s in sensors] == [1, 3]


def test_sensor_data_bad_id():
    with pytest.raises(FreeIPMIError):
        freeipmi.get_sensor_data(Result(b"x,A,B,Nominal,1,C,'OK'\n"), [])


def test_sensor_data_bad_value():
    with pytest.raises(FreeIPMIError):
        freeipmi.get_sensor_data(Result(b"1,A,B,Nominal,abc,C,'OK'\n"), [])


def test_sensor_data_inconsistent_fields():
    output = b"1,A,B,Nominal,1,C,'OK'\n2,A,B,Nominal,1,C\n"
    with pytest.raises(FreeIPMIError):
        freeipmi.get_sensor_data(Result(output), [])


def test_sensor_data_failed_result():
    with pytest.raises(FreeIPMIError, match="boom"):
        freeipmi.get_sensor_data(FAILED, [])


def test_sel_events():
    events = freeipmi.get_sel_events(Result(SEL_EVENTS))
    assert [e.id for e in events] == [1, 3]
    assert events[0].date == "Jan-02-2023"
    assert events[0].time == "10:00:00"
    assert events[1].name == "Sensor #211"
    assert events[1].state == "Critical"
    assert events[1].event == "Correctable memory error ; Event Data3 = 34h"


def test_sel_events_empty_output():
    assert freeipmi.get_sel_events(Result(b"")) == []


def test_sel_events_failed_result():
    with pytest.raises(FreeIPMIError):
        freeipmi.get_sel_events(FAILED)


ECHO_SCRIPT = (
    "import sys\n"
    "args = sys.argv[1:]\n"
    "path = args[args.index('--config-file') + 1]\n"
    "print(open(path).read(), end='')\n"
    "print('host=' + (args[args.index('-h') + 1] if '-h' in args else ''))\n"
    "print('pipe=' + path)\n"
)


def _pipe_from(output: bytes) -> str:
    last = output.decode().strip().splitlines()[-1]
    return last.removeprefix("pipe=")


def test_execute_passes_config_and_target():
    result = freeipmi.execute(sys.executable, ["-c", ECHO_SCRIPT], "driver-type LAN_2_0\n", "10.0.0.1")
    assert result.error is None
    lines = result.text.splitlines()
    assert lines[0] == "driver-type LAN_2_0"
    assert lines[1] == "host=10.0.0.1"
    assert not os.path.exists(_pipe_from(result.output))


def test_execute_local_target_has_no_host_flag():
    result = freeipmi.execute(sys.executable, ["-c", ECHO_SCRIPT], "", "")
    assert result.error is None
    assert "host=" in result.text.splitlines()


def test_execute_nonzero_exit():
    script = "import sys\nprint('partial')\nsys.exit(3)\n"
    result = freeipmi.execute(sys.executable, ["-c", script], "username admin\n", "")
    assert isinstance(result.error, FreeIPMIError)
    assert "exit status 3" in str(result.error)
    assert result.text.strip() == "partial"


def test_execute_missing_command():
    result = freeipmi.execute("/nonexistent/ipmi-tool", [], "", "")
    assert result.output == b""
    assert "error running /nonexistent/ipmi-tool" in str(result.error)


def test_execute_does_not_modify_args():
    args = ["-c", "pass"]
    freeipmi.execute(sys.executable, args, "", "host.example.com")
    assert args == ["-c", "pass"]