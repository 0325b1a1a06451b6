from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Query service (aggregation / downsampling RPC endpoints)
    query_service_url: str = Field(default="http://localhost:54321", description="Query service base URL")
    query_service_key: str = Field(default="", description="API key sent as apikey and bearer token")
    query_service_timeout: float = Field(default=30.0, description="RPC timeout in seconds")
    rpc_path_template: str = Field(default="/rest/v1/rpc/{function}", description="RPC path template")

    # RPC function names
    pod_days_function: str = Field(default="get_pod_days", description="Day availability RPC")
    pod_span_function: str = Field(default="get_pod_earliest_latest", description="Recording span RPC")
    aggregation_function: str = Field(default="aggregate_leads", description="Bucket aggregation RPC")
    downsample_function: str = Field(default="peak_preserving_downsample_ecg", description="Waveform downsample RPC")

    # Drill-down bucket widths
    hour_bucket_seconds: int = Field(default=3600, description="Bucket width on the day level")
    minute_bucket_seconds: int = Field(default=60, description="Bucket width on the hour level")

    # Point budget
    points_min: int = Field(default=500, description="Lower bound of the auto point budget")
    points_max: int = Field(default=20000, description="Upper bound of the auto point budget")
    default_points: int = Field(
        default=2000, description="Suggested override for frontend budget pickers; the auto budget ignores it"
    )
    auto_points_per_second: float = Field(default=50.0, description="Auto budget growth per second of window")
    max_window_hours: int = Field(default=24, description="Longest window accepted for downsampling")

    # Plot defaults
    plot_width: int = Field(default=800, description="Default plot width in pixels")
    plot_height: int = Field(default=250, description="Default plot height in pixels")
    default_y_min: float = Field(default=-50.0, description="Initial lower amplitude bound (µV)")
    default_y_max: float = Field(default=50.0, description="Initial upper amplitude bound (µV)")
    zoom_min: float = Field(default=0.5, description="Minimum horizontal zoom")
    zoom_max: float = Field(default=10.0, description="Maximum horizontal zoom")
    timeline_width: int = Field(default=600, description="Default drag bar width in pixels")
    timeline_height: int = Field(default=30, description="Default drag bar height in pixels")

    # Sessions
    session_idle_minutes: int = Field(default=30, description="Idle explorer sessions are closed after this")
    session_sweep_seconds: int = Field(default=60, description="Interval of the idle session sweep")

    # Diagnostics
    diagnostics_history: int = Field(default=50, description="Number of RPC calls kept for diagnostics")

    # Compression Settings
    gzip_enabled: bool = True
    gzip_min_size: int = 2048      # 2 KiB
    gzip_level: int = 6

    # Application Settings
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # CORS Settings
    allowed_origins: str = Field(default="*", description="Allowed CORS origins")

    def get_api_constraints(self) -> dict:
        """Return API constraints for frontend."""
        return {
            "points": {
                "min": self.points_min,
                "max": self.points_max,
                "default": self.default_points,
                "per_second": self.auto_points_per_second,
            },
            "zoom": {
                "min": self.zoom_min,
                "max": self.zoom_max,
            },
            "window": {
                "max_hours": self.max_window_hours,
            },
            "buckets": {
                "hour_seconds": self.hour_bucket_seconds,
                "minute_seconds": self.minute_bucket_seconds,
            },
        }

    def get_rpc_url(self, function: str) -> str:
        """Get the full URL of an RPC function."""
        return self.query_service_url.rstrip("/") + self.rpc_path_template.format(function=function)

    def get_allowed_origins(self) -> list:
        """Split the comma separated CORS origins."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


# Global settings instance
app_settings = AppSettings()
