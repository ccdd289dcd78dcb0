"""cpuprobe - Textual application and command line entry point."""

import argparse
import logging
import sys
import time
from queue import Empty, Queue

from textual.app import App, ComposeResult
from textual.containers import Container
from textual.widgets import DataTable, Footer, Static

from cpuprobe import sources
from cpuprobe.config import SOURCES, ProbeConfig, configure_logging, load_config
from cpuprobe.engine import calculate_interval, to_percentages
from cpuprobe.errors import ProbeError
from cpuprobe.models import CPU_TIME_FIELDS, CpuStat, CpuStatPercentages
from cpuprobe.monitor import CpuMonitor, CpuSample, Reader

logger = logging.getLogger(__name__)

BAR_WIDTH = 20


def format_bar(percent: float, color: str = "green") -> str:
    """Render a percentage as a fixed width bar using Rich markup."""
    bar_len = min(int(percent / (100 / BAR_WIDTH)), BAR_WIDTH)
    bar_len = max(bar_len, 0)
    return f"[{color}]█[/{color}]" * bar_len + "[dim]░[/dim]" * (BAR_WIDTH - bar_len)


def format_breakdown(percentages: CpuStatPercentages) -> str:
    """Format a percentage breakdown as plain text, one category per line."""
    return "\n".join(f"{name:<10} {value:6.2f}%" for name, value in percentages.as_dict().items())


class UsageSummary(Static):
    """Header widget showing busy/idle bars for the last interval."""

    DEFAULT_CSS = """
    UsageSummary {
        height: auto;
        min-height: 4;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize UsageSummary."""
        super().__init__(*args, **kwargs)
        self._percentages: CpuStatPercentages | None = None

    def update_percentages(self, percentages: CpuStatPercentages) -> None:
        """Update the bars from a percentage breakdown."""
        self._percentages = percentages
        self.update(self._get_summary())

    def on_mount(self) -> None:
        self.update(self._get_summary())

    def _get_summary(self) -> str:
        if self._percentages is None:
            return "Waiting for the first interval..."
        p = self._percentages
        busy = p.user + p.nice + p.system + p.irq + p.softirq + p.steal + p.guest + p.guestnice
        idle = p.idle + p.iowait
        # Use escaped brackets for the bar containers
        return (
            f"Busy \\[{format_bar(busy)}] {busy:5.1f}%\n"
            f"Idle \\[{format_bar(idle, 'cyan')}] {idle:5.1f}%"
        )


class BreakdownTable(Container):
    """Container for the per-category table."""

    DEFAULT_CSS = """
    BreakdownTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def compose(self) -> ComposeResult:
        """Compose the breakdown table."""
        yield DataTable(id="breakdown-table")

    def on_mount(self) -> None:
        """Add one row per category when mounted."""
        table = self.query_one("#breakdown-table", DataTable)
        table.cursor_type = "row"

        table.add_column("Category", key="category", width=10)
        table.add_column("Ticks", key="ticks", width=10)
        table.add_column("CPU%", key="percent", width=8)
        table.add_column("", key="bar")

        for name in CPU_TIME_FIELDS:
            table.add_row(name, "-", "-", "", key=name)

    def update_sample(self, stat: CpuStat, percentages: CpuStatPercentages) -> None:
        """Update every row in place from a new sample."""
        table = self.query_one("#breakdown-table", DataTable)
        for name in CPU_TIME_FIELDS:
            percent = getattr(percentages, name)
            table.update_cell(name, "ticks", str(getattr(stat, name)))
            table.update_cell(name, "percent", f"{percent:5.1f}")
            table.update_cell(name, "bar", format_bar(percent))


class CpuProbeApp(App):
    """Main cpuprobe application."""

    TITLE = "cpuprobe"
    SUB_TITLE = "CPU time breakdown"

    CSS = """
    Screen {
        layout: vertical;
    }

    #usage-summary {
        dock: top;
        height: auto;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
    ]

    def __init__(self, config: ProbeConfig | None = None, reader: Reader | None = None) -> None:
        """Initialize the CpuProbeApp."""
        super().__init__()
        self._config = config or ProbeConfig()
        self._update_queue: Queue[CpuSample] = Queue()
        self._monitor = CpuMonitor(self._update_queue, self._config, reader)
        self._last_sample: CpuSample | None = None

    @property
    def last_sample(self) -> CpuSample | None:
        return self._last_sample

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield UsageSummary(id="usage-summary")
        yield BreakdownTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the monitor when the app is mounted."""
        self._monitor.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain the queue and show the most recent sample."""
        sample = None
        while True:
            try:
                sample = self._update_queue.get_nowait()
            except Empty:
                break

        if sample is not None:
            self.show_sample(sample)

    def show_sample(self, sample: CpuSample) -> None:
        """Update the widgets with a new sample."""
        self._last_sample = sample
        self.query_one("#usage-summary", UsageSummary).update_percentages(sample.percentages)
        self.query_one(BreakdownTable).update_sample(sample.stat, sample.percentages)

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cpuprobe", description="Show how CPU time is spent.")
    parser.add_argument("--config", help="Path to a TOML configuration file")
    parser.add_argument("--source", choices=SOURCES, help="Counter source to read")
    parser.add_argument("--interval", type=float, dest="poll_interval_s", help="Seconds between measurements")
    parser.add_argument("--log-level", dest="log_level", help="Logging level, e.g. DEBUG or INFO")
    parser.add_argument("--once", action="store_true", help="Print one interval as text and exit")
    return parser


def run_once(config: ProbeConfig, sleep=time.sleep) -> CpuStatPercentages:
    """Measure one interval of ``poll_interval_s`` seconds and return its breakdown."""
    earlier = sources.read(config.source, config)
    sleep(config.poll_interval_s)
    later = sources.read(config.source, config)
    return to_percentages(calculate_interval(earlier, later, config.reference_interval_ns))


def main(argv: list[str] | None = None) -> int:
    """Entry point for the cpuprobe application."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config) if args.config else ProbeConfig()
        config = config.with_overrides(
            source=args.source,
            poll_interval_s=args.poll_interval_s,
            log_level=args.log_level,
        )
    except ProbeError as e:
        print(f"cpuprobe: {e}", file=sys.stderr)
        return 2

    # Log lines on the terminal would garble the TUI
    if args.once or config.log_file:
        configure_logging(config)

    if args.once:
        try:
            print(format_breakdown(run_once(config)))
        except ProbeError as e:
            logger.error(f"Measurement failed: {e}")
            return 1
        return 0

    CpuProbeApp(config).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
