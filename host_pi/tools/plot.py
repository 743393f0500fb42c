"""Plot attitude and heading from a CSV recorded with ``witimu run --output-csv``."""

from __future__ import annotations

import sys
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd


def plot_attitude(csv_path: Path) -> None:
    data = pd.read_csv(csv_path)
    for source, group in data.groupby("source"):
        fig, (ax_att, ax_hdg) = plt.subplots(2, 1, figsize=(10, 6), sharex=True)
        sample = np.arange(len(group))
        for column, color in (("roll", "tab:blue"), ("pitch", "tab:orange")):
            ax_att.plot(sample, np.degrees(group[column]), label=column, color=color)
        ax_att.set_ylabel("Angle [°]")
        ax_att.legend(loc="upper right")
        ax_att.set_title(str(source))

        ax_hdg.plot(sample, np.degrees(group["heading"]) % 360.0, label="heading (magnetic)", color="tab:green")
        ax_hdg.set_xlabel("Dataset #")
        ax_hdg.set_ylabel("Heading [°]")
        ax_hdg.legend(loc="upper right")
        fig.tight_layout()
    plt.show()


if __name__ == "__main__":
    if len(sys.argv) != 2:
        sys.exit("usage: plot.py <recording.csv>")
    plot_attitude(Path(sys.argv[1]))
