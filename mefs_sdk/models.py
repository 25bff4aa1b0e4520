"""
Data models for MEFS SDK.

This module defines the typed results the endpoint wrappers return. Each
model reads the gateway's JSON (PascalCase keys) through ``from_dict``.
"""

from datetime import datetime
from enum import IntEnum
from typing import Optional, List, Dict, Any
from dataclasses import dataclass, field

# Timestamp layout the gateway uses in bucket and object listings.
SHOWTIME_FORMAT = "%Y-%m-%d %a %H:%M:%S %Z"


def parse_showtime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value, SHOWTIME_FORMAT)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass
class BucketStat:
    """Bucket entry as reported by the gateway."""

    bucket_name: str
    bucket_id: int = 0
    ctime: str = ""
    policy: int = 0
    data_count: int = 0
    parity_count: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BucketStat":
        return cls(
            bucket_name=data.get("BucketName", ""),
            bucket_id=int(data.get("BucketID", 0) or 0),
            ctime=data.get("Ctime", ""),
            policy=int(data.get("Policy", 0) or 0),
            data_count=int(data.get("DataCount", 0) or 0),
            parity_count=int(data.get("ParityCount", 0) or 0),
        )


@dataclass
class ObjectStat:
    """Object entry as reported by the gateway."""

    object_name: str
    object_size: int = 0
    md5: str = ""
    ctime: str = ""
    dir: bool = False
    latest_chal_time: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectStat":
        return cls(
            object_name=data.get("ObjectName", ""),
            object_size=int(data.get("ObjectSize", 0) or 0),
            md5=data.get("MD5", ""),
            ctime=data.get("Ctime", ""),
            dir=bool(data.get("Dir", False)),
            latest_chal_time=data.get("LatestChalTime", ""),
        )


@dataclass
class BucketInfo:
    """Bucket metadata."""

    name: str
    creation_date: Optional[datetime] = None

    @classmethod
    def from_stat(cls, stat: BucketStat) -> "BucketInfo":
        return cls(name=stat.bucket_name, creation_date=parse_showtime(stat.ctime))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "creationDate": self.creation_date.isoformat() if self.creation_date else None,
        }


@dataclass
class ObjectInfo:
    """Object metadata."""

    key: str
    size: int = 0
    etag: str = ""
    last_modified: Optional[datetime] = None
    content_type: str = ""
    is_dir: bool = False
    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_stat(cls, stat: ObjectStat) -> "ObjectInfo":
        return cls(
            key=stat.object_name,
            size=stat.object_size,
            etag=stat.md5,
            last_modified=parse_showtime(stat.ctime),
            is_dir=stat.dir,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.key,
            "size": self.size,
            "etag": self.etag,
            "lastModified": self.last_modified.isoformat() if self.last_modified else None,
            "contentType": self.content_type,
            "dir": self.is_dir,
            "metadata": self.metadata,
        }


def buckets_from_response(data: Dict[str, Any]) -> List[BucketStat]:
    return [BucketStat.from_dict(item) for item in (data.get("Buckets") or [])]


def objects_from_response(data: Dict[str, Any]) -> List[ObjectStat]:
    return [ObjectStat.from_dict(item) for item in (data.get("Objects") or [])]


@dataclass
class UserPrivMessage:
    """Address and private key of a newly created user."""

    address: str
    sk: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserPrivMessage":
        return cls(address=data.get("Address", ""), sk=data.get("Sk", ""))


@dataclass
class PeerInfo:
    id: str
    addrs: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PeerInfo":
        return cls(id=data.get("ID", ""), addrs=list(data.get("Addrs") or []))


@dataclass
class PeerState:
    peer_id: str
    connected: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PeerState":
        return cls(peer_id=data.get("PeerID", ""), connected=bool(data.get("Connected", False)))

    def __str__(self):
        if self.connected:
            return f"{self.peer_id} connected"
        return f"{self.peer_id} unconnected"


@dataclass
class PeerList:
    peers: List[PeerState] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PeerList":
        data = data or {}
        return cls(peers=[PeerState.from_dict(p) for p in (data.get("Peers") or [])])

    def __str__(self):
        return "".join(f"{peer}\n" for peer in self.peers)


@dataclass
class IdOutput:
    """Identity of a gateway node."""

    id: str
    public_key: str = ""
    addresses: List[str] = field(default_factory=list)
    agent_version: str = ""
    protocol_version: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdOutput":
        return cls(
            id=data.get("ID", ""),
            public_key=data.get("PublicKey", ""),
            addresses=list(data.get("Addresses") or []),
            agent_version=data.get("AgentVersion", ""),
            protocol_version=data.get("ProtocolVersion", ""),
        )


class QueryEventType(IntEnum):
    SENDING_QUERY = 0
    PEER_RESPONSE = 1
    FINAL_PEER = 2
    QUERY_ERROR = 3
    PROVIDER = 4
    VALUE = 5
    ADDING_PEER = 6
    DIALING_PEER = 7


@dataclass
class QueryEvent:
    """Routing query event returned by DHT lookups."""

    id: str
    type: QueryEventType = QueryEventType.SENDING_QUERY
    responses: List[PeerInfo] = field(default_factory=list)
    extra: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueryEvent":
        try:
            event_type = QueryEventType(int(data.get("Type", 0) or 0))
        except ValueError:
            event_type = QueryEventType.QUERY_ERROR
        return cls(
            id=data.get("ID", ""),
            type=event_type,
            responses=[PeerInfo.from_dict(r) for r in (data.get("Responses") or []) if r],
            extra=data.get("Extra", ""),
        )


@dataclass
class BlockStat:
    key: str
    size: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlockStat":
        return cls(key=data.get("Key", ""), size=int(data.get("Size", 0) or 0))


@dataclass
class SwarmStreamInfo:
    protocol: str


@dataclass
class SwarmConnInfo:
    addr: str
    peer: str
    latency: str = ""
    muxer: str = ""
    streams: List[SwarmStreamInfo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwarmConnInfo":
        return cls(
            addr=data.get("Addr", ""),
            peer=data.get("Peer", ""),
            latency=data.get("Latency", ""),
            muxer=data.get("Muxer", ""),
            streams=[SwarmStreamInfo(protocol=s.get("Protocol", "")) for s in (data.get("Streams") or [])],
        )


def string_list(data: Any) -> List[str]:
    """Decode the gateway's ``{"ChildLists": [...]}`` string list."""
    if isinstance(data, dict):
        return [str(item) for item in (data.get("ChildLists") or [])]
    if isinstance(data, list):
        return [str(item) for item in data]
    if data is None:
        return []
    return [str(data)]
