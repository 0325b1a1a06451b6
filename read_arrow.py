import sys

import pyarrow.ipc as pa_ipc

# Inspect a samples export saved from /explorer/sessions/{id}/samples?format=arrow
path = sys.argv[1] if len(sys.argv) > 1 else "window.arrow"

with pa_ipc.open_stream(open(path, "rb")) as r:
    tbl = r.read_all()
    print("Schema:", tbl.schema)
    print("Rows:", tbl.num_rows)

    # first samples of each lead
    print(tbl.column("time")[:10])
    for ch in (1, 2, 3):
        print(f"Lead {ch}:", tbl.column(f"channel_{ch}")[:10])
