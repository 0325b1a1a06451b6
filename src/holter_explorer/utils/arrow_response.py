import io
from typing import List, Optional

import pandas as pd
import pyarrow as pa
import pyarrow.ipc as pa_ipc
from starlette.requests import Request
from starlette.responses import StreamingResponse

from ..entities.waveform import WaveformSample

ARROW_MIME = "application/vnd.apache.arrow.stream"
CSV_MIME = "text/csv"

SAMPLE_COLUMNS = [
    "time",
    "channel_1", "channel_2", "channel_3",
    "lead_on_p_1", "lead_on_p_2", "lead_on_p_3",
    "lead_on_n_1", "lead_on_n_2", "lead_on_n_3",
    "quality_1", "quality_2", "quality_3",
]


def client_wants_arrow(request: Request) -> bool:
    """True when the client sent `Accept: application/vnd.apache.arrow.stream`."""
    accept = request.headers.get("accept", "")
    return ARROW_MIME in accept.lower()


def samples_to_dataframe(samples: List[WaveformSample]) -> pd.DataFrame:
    """Flatten decimated samples into one row per sample, one column per channel and flag."""
    rows = [
        [s.sample_time, *s.channels, *s.lead_on_p, *s.lead_on_n, *s.quality]
        for s in samples
    ]
    df = pd.DataFrame(rows, columns=SAMPLE_COLUMNS)
    df["time"] = pd.to_datetime(df["time"], utc=True)
    return df


def dataframe_to_arrow_streaming_response(
    df: pd.DataFrame,
    filename: Optional[str] = "window.arrow",
) -> StreamingResponse:
    """Serialize a DataFrame as an Arrow IPC stream (without index)."""
    # no index column
    table = pa.Table.from_pandas(df, preserve_index=False)
    sink = pa.BufferOutputStream()
    with pa_ipc.new_stream(sink, table.schema) as writer:
        writer.write_table(table)
    buf = sink.getvalue()

    return StreamingResponse(
        io.BytesIO(buf.to_pybytes()),
        media_type=ARROW_MIME,
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


def dataframe_to_csv_streaming_response(
    df: pd.DataFrame,
    filename: Optional[str] = "window.csv",
) -> StreamingResponse:
    """Serialize a DataFrame as a CSV attachment with ISO-8601 timestamps."""
    buffer = io.StringIO()
    df.to_csv(buffer, index=False, date_format="%Y-%m-%dT%H:%M:%S.%fZ")
    return StreamingResponse(
        io.BytesIO(buffer.getvalue().encode("utf-8")),
        media_type=CSV_MIME,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
