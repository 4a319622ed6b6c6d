"""按行分隔 JSON（NDJSON）流的增量解析器。

上游推理服务以任意边界切分字节流：可能切在行中间、记录中间，甚至
UTF-8 多字节字符中间。解析器只处理以换行结尾的完整行，最后一段
（无论为空还是半行）始终保留到下一次 feed。

每条完整行：
- 空行/纯空白行：跳过。
- 解析失败：抛出 UpstreamProtocolError，整个流读取失败。
- 非法 UTF-8 字节：同样抛出 UpstreamProtocolError，不做替换。
- {"message": {"content": "..."}}：非空片段按顺序拼接进回复。
- {"done": true}：本次生成结束，本次 feed 剩余内容不再处理。
"""

import codecs
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Union

from relay_core.domain.exceptions import UpstreamProtocolError


@dataclass
class StreamAccumulator:
    """单个请求独占的流式状态，请求结束后丢弃。"""

    line_buffer: str = ""
    aggregated_reply: str = ""
    done_seen: bool = False


def feed_text(state: StreamAccumulator, text: str) -> List[Dict[str, Any]]:
    """把一段已解码文本并入 state，返回本次解析出的完整记录。"""

    if state.done_seen:
        return []
    state.line_buffer += text
    *lines, state.line_buffer = state.line_buffer.split("\n")
    records: List[Dict[str, Any]] = []
    for line in lines:
        if not line.strip():
            continue
        record = decode_line(line)
        records.append(record)
        fragment = extract_fragment(record)
        if fragment:
            state.aggregated_reply += fragment
        if record.get("done"):
            state.done_seen = True
            state.line_buffer = ""
            break
    return records


def decode_line(line: str) -> Dict[str, Any]:
    try:
        record = json.loads(line)
    except json.JSONDecodeError as e:
        raise UpstreamProtocolError(f"malformed stream line: {e.msg}", line=line[:200])
    if not isinstance(record, dict):
        raise UpstreamProtocolError("stream record is not a JSON object", line=line[:200])
    if record.get("error"):
        raise UpstreamProtocolError(f"upstream reported error: {record['error']}", line=line[:200])
    return record


def extract_fragment(record: Dict[str, Any]) -> str:
    message = record.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    return content if isinstance(content, str) else ""


class NdjsonStreamParser:
    """字节块到 JSON 记录的增量解析器。

    用法::

        parser = NdjsonStreamParser()
        for chunk in chunks:
            parser.feed(chunk)
            if parser.done:
                break
        reply = parser.reply
    """

    def __init__(self) -> None:
        self.state = StreamAccumulator()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="strict")

    @property
    def reply(self) -> str:
        return self.state.aggregated_reply

    @property
    def done(self) -> bool:
        return self.state.done_seen

    @property
    def pending(self) -> str:
        """尚未以换行结尾的残留内容。"""

        return self.state.line_buffer

    def feed(self, chunk: Union[bytes, str]) -> List[Dict[str, Any]]:
        if isinstance(chunk, bytes):
            try:
                text = self._decoder.decode(chunk)
            except UnicodeDecodeError as e:
                raise UpstreamProtocolError(f"invalid UTF-8 in stream: {e.reason}")
        else:
            text = chunk
        return feed_text(self.state, text)

    def close(self) -> str:
        """流结束：冲刷解码器并返回回复。残留的半行不会作为记录输出。"""

        try:
            tail = self._decoder.decode(b"", final=True)
        except UnicodeDecodeError:
            # 截断在多字节字符中间：残缺字节只属于被丢弃的半行
            tail = ""
        if tail and not self.state.done_seen:
            self.state.line_buffer += tail
        return self.state.aggregated_reply
