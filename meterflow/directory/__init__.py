from meterflow.directory.port import (
	BuildingInfo,
	DirectoryPort,
	ServiceInfo,
	StaffInfo,
	UnitInfo,
)


def get_directory() -> DirectoryPort:
	"""FastAPI dependency; tests override it with a fake directory."""
	from meterflow.directory.http import HttpDirectory, get_http_client

	return HttpDirectory(get_http_client())


__all__ = [
	"BuildingInfo",
	"DirectoryPort",
	"ServiceInfo",
	"StaffInfo",
	"UnitInfo",
	"get_directory",
]
