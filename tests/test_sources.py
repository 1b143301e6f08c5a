import subprocess

import pytest

from condor_sysmon import sources
from condor_sysmon.sources import (
    LinuxSource,
    MacOSSource,
    UnsupportedPlatformError,
    UnsupportedSource,
    parse_cpuinfo_model,
    parse_free,
    parse_netstat_ib,
    parse_proc_net_dev,
    parse_proc_stat,
    parse_ps,
    parse_top_usage,
    parse_vm_stat,
    select_source,
)

TOP_OUTPUT = """Processes: 612 total, 3 running, 609 sleeping, 3012 threads
2024/05/01 10:00:00
Load Avg: 2.10, 2.35, 2.41
CPU usage: 12.50% user, 7.25% sys, 80.25% idle
SharedLibs: 512M resident, 96M data, 48M linkedit.
"""

VM_STAT_OUTPUT = """Mach Virtual Memory Statistics: (page size of 16384 bytes)
Pages free:                               10000.
Pages active:                            300000.
Pages inactive:                          290000.
Pages speculative:                         5000.
Pages wired down:                        100000.
Pages occupied by compressor:             50000.
"""

NETSTAT_OUTPUT = """Name       Mtu   Network       Address            Ipkts Ierrs     Ibytes    Opkts Oerrs     Obytes  Coll
lo0        16384 <Link#1>                         1000     0     900000     1000     0     900000     0
lo0        16384 127           localhost          1000     -     900000     1000     -     900000     -
en0        1500  <Link#6>    aa:bb:cc:dd:ee:ff   5000     0    1500000     4000     0     400000     0
en0        1500  192.168.1     192.168.1.20       5000     -    1500000     4000     -     400000     -
utun0      1380  <Link#12>                         100     0      20000      120     0      30000     0
"""

PROC_NET_DEV = """Inter-|   Receive                                                |  Transmit
 face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed
    lo:  500000    4000    0    0    0     0          0         0   500000    4000    0    0    0     0       0          0
  eth0: 1200000    9000    0    0    0     0          0         0   340000    3000    0    0    0     0       0          0
 wlan0:  300000    2000    0    0    0     0          0         0    60000     800    0    0    0     0       0          0
"""

FREE_OUTPUT = """               total        used        free      shared  buff/cache   available
Mem:           15890        6120        2048         512        7722        8900
Swap:           2047           0        2047
"""

PS_OUTPUT = """  PID  %CPU %MEM COMM
  812  45.3  2.1 /Applications/Google Chrome.app/Contents/MacOS/Google Chrome
  101  12.0  0.4 WindowServer
 bad   1.0  0.1 broken
  900   n/a  0.2 mds
"""


def fake_commands(monkeypatch, outputs):
    def run(args):
        key = " ".join(args)
        if key not in outputs:
            raise FileNotFoundError(args[0])
        return outputs[key]

    monkeypatch.setattr(sources, "run_command", run)


def test_parse_top_usage():
    assert parse_top_usage(TOP_OUTPUT) == pytest.approx(19.75)
    assert parse_top_usage("no cpu line here") is None


def test_parse_vm_stat():
    pages = parse_vm_stat(VM_STAT_OUTPUT)
    assert pages["Pages active"] == 300000
    assert pages["Pages wired down"] == 100000
    assert pages["Pages occupied by compressor"] == 50000


def test_parse_free():
    assert parse_free(FREE_OUTPUT) == (15890, 6120, 2048)
    assert parse_free("") is None


def test_parse_cpuinfo_model():
    text = "processor\t: 0\nvendor_id\t: GenuineIntel\nmodel name\t: Intel(R) Core(TM) i7-8700 CPU @ 3.20GHz\n"
    assert parse_cpuinfo_model(text) == "Intel(R) Core(TM) i7-8700 CPU @ 3.20GHz"
    assert parse_cpuinfo_model("processor : 0\n") is None


def test_parse_proc_stat():
    text = "cpu  100 0 50 800 50 0 0 0 0 0\ncpu0 50 0 25 400 25 0 0 0 0 0\n"
    assert parse_proc_stat(text) == (850, 1000)


def test_parse_netstat_counts_link_rows_only_and_skips_loopback():
    assert parse_netstat_ib(NETSTAT_OUTPUT) == (1520000, 430000)


def test_parse_netstat_without_interfaces():
    assert parse_netstat_ib(NETSTAT_OUTPUT.splitlines()[0]) is None


def test_parse_proc_net_dev_skips_loopback():
    assert parse_proc_net_dev(PROC_NET_DEV) == (1500000, 400000)


def test_parse_ps_keeps_os_order_and_names_with_spaces():
    rows = parse_ps(PS_OUTPUT)
    assert rows[0] == (812, 45.3, 2.1, "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome")
    assert rows[1] == (101, 12.0, 0.4, "WindowServer")
    assert rows[2] == (900, 0.0, 0.2, "mds")
    assert len(rows) == 3


def test_select_source():
    assert isinstance(select_source("darwin"), MacOSSource)
    assert isinstance(select_source("linux"), LinuxSource)
    unsupported = select_source("win32")
    assert isinstance(unsupported, UnsupportedSource)
    assert unsupported.platform == "win32"


def test_unsupported_source_refuses_every_query():
    source = UnsupportedSource("sunos5")
    for query in (
        source.cpu_model,
        source.cpu_cores,
        source.cpu_percent,
        source.memory,
        source.network_counters,
        source.processes,
        source.interfaces,
    ):
        with pytest.raises(UnsupportedPlatformError):
            query()


def test_macos_memory_from_vm_stat(monkeypatch):
    fake_commands(
        monkeypatch,
        {
            "vm_stat": VM_STAT_OUTPUT,
            "sysctl -n hw.pagesize": "16384\n",
            "sysctl -n hw.memsize": str(16 * 1024**3) + "\n",
        },
    )
    # (300000 + 100000 + 50000) pages * 16 KiB
    assert MacOSSource().memory() == (16384, 7031, 16384 - 7031)


def test_macos_memory_falls_back_to_memsize(monkeypatch):
    fake_commands(monkeypatch, {"sysctl -n hw.memsize": str(8 * 1024**3)})
    assert MacOSSource().memory() == (8192, 5734, 2458)


def test_macos_memory_falls_back_to_psutil(monkeypatch):
    fake_commands(monkeypatch, {})

    class VirtualMemory:
        total = 4 * 1024**3
        available = 1024**3

    monkeypatch.setattr(sources.psutil, "virtual_memory", lambda: VirtualMemory())
    assert MacOSSource().memory() == (4096, 3072, 1024)


def test_macos_cpu_queries(monkeypatch):
    fake_commands(
        monkeypatch,
        {
            "top -l 1 -n 0": TOP_OUTPUT,
            "sysctl -n hw.ncpu": "10\n",
            "sysctl -n machdep.cpu.brand_string": "Apple M2 Pro\n",
        },
    )
    source = MacOSSource()
    assert source.cpu_percent() == pytest.approx(19.75)
    assert source.cpu_cores() == 10
    assert source.cpu_model() == "Apple M2 Pro"


def test_macos_network_and_processes(monkeypatch):
    fake_commands(
        monkeypatch,
        {"netstat -ib": NETSTAT_OUTPUT, "ps -eo pid,pcpu,pmem,comm -r": PS_OUTPUT},
    )
    source = MacOSSource()
    assert source.network_counters() == (1520000, 430000)
    assert [row[0] for row in source.processes()] == [812, 101, 900]


def test_failed_command_surfaces_from_source(monkeypatch):
    def run(args):
        raise subprocess.CalledProcessError(1, args)

    monkeypatch.setattr(sources, "run_command", run)
    with pytest.raises(subprocess.CalledProcessError):
        MacOSSource().processes()


def test_linux_cpu_percent_uses_delta_between_readings(monkeypatch):
    readings = iter(
        [
            "cpu  100 0 100 800 0 0 0 0 0 0\n",
            "cpu  160 0 140 900 0 0 0 0 0 0\n",
        ]
    )
    monkeypatch.setattr(sources, "read_text", lambda path: next(readings))
    source = LinuxSource()
    assert source.cpu_percent() == pytest.approx(20.0)
    # 100 busy jiffies out of 200 since the previous reading
    assert source.cpu_percent() == pytest.approx(50.0)


def test_linux_memory_and_network(monkeypatch):
    fake_commands(monkeypatch, {"free -m": FREE_OUTPUT})
    monkeypatch.setattr(sources, "read_text", lambda path: PROC_NET_DEV)
    source = LinuxSource()
    assert source.memory() == (15890, 6120, 2048)
    assert source.network_counters() == (1500000, 400000)
