import time
from typing import Any, Dict, Optional

import requests

from sceneboard.errors import GenerationError

TERMINAL_FAILURES = ("failed", "canceled")


class ReplicateClient:
    def __init__(self, api_token: str, base_url: str = "https://api.replicate.com/v1", request_timeout_sec: int = 60):
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.request_timeout_sec = request_timeout_sec

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_token}",
        }

    def run_model(self, model_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        # "owner/name:version" pins a version, plain "owner/name" runs the latest.
        if ":" in model_id:
            url = f"{self.base_url}/predictions"
            body = {"version": model_id.split(":", 1)[1], "input": payload}
        else:
            url = f"{self.base_url}/models/{model_id}/predictions"
            body = {"input": payload}
        resp = requests.post(url, headers=self._headers(), json=body, timeout=self.request_timeout_sec)
        if resp.status_code not in (200, 201):
            raise GenerationError(f"Submit failed: {resp.status_code}", details=resp.text[:500])
        data = resp.json()
        if isinstance(data.get("urls"), dict):
            data["result_url"] = data["urls"].get("get")
        return data

    def poll_result(
        self,
        prediction_id: str,
        result_url_hint: Optional[str] = None,
        timeout_sec: int = 300,
        poll_interval_sec: float = 1,
    ) -> Dict[str, Any]:
        deadline = time.time() + timeout_sec
        url = result_url_hint or f"{self.base_url}/predictions/{prediction_id}"
        while time.time() < deadline:
            resp = requests.get(url, headers=self._headers(), timeout=self.request_timeout_sec)
            if resp.status_code != 200:
                raise GenerationError(f"Poll failed: {resp.status_code}", details=resp.text[:500])
            data = resp.json()
            status = data.get("status")
            if status == "succeeded":
                return data
            if status in TERMINAL_FAILURES:
                raise GenerationError(f"Prediction {status}", details=str(data.get("error") or ""))
            time.sleep(poll_interval_sec)
        raise TimeoutError(f"Timed out waiting for prediction {prediction_id}")


def first_output_url(output: Any) -> Optional[str]:
    if isinstance(output, str):
        return output or None
    if isinstance(output, list) and output:
        return first_output_url(output[0])
    if isinstance(output, dict):
        return output.get("url") or output.get("uri")
    return None


class UniversalRunner:
    def __init__(self, api_token: str, base_url: str = "https://api.replicate.com/v1", poll_interval_sec: float = 1):
        self.client = ReplicateClient(api_token, base_url=base_url)
        self.poll_interval_sec = poll_interval_sec

    def run(self, model_id: str, params: Dict[str, Any], timeout_sec: int = 300) -> Dict[str, Any]:
        prediction = self.client.run_model(model_id, params)
        if prediction.get("status") == "succeeded":
            result = prediction
        else:
            result = self.client.poll_result(
                prediction["id"],
                result_url_hint=prediction.get("result_url"),
                timeout_sec=timeout_sec,
                poll_interval_sec=self.poll_interval_sec,
            )
        output = result.get("output")
        return {"output": output, "output_url": first_output_url(output), "content": result}
