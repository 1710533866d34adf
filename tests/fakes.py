"""In-memory doubles for Redis and the provider adapters"""
from lorepin.schemas import ImageAnalysisResult, TextAnalysisResult, VideoAnalysisResult, VideoJobStatus


class FakePipeline:
    """Records INCR/EXPIRE calls and replays them on execute"""

    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    def incr(self, key):
        self.ops.append(("incr", key))
        return self

    def expire(self, key, seconds):
        self.ops.append(("expire", key, seconds))
        return self

    async def execute(self):
        if self.redis.fail:
            raise ConnectionError("redis unavailable")
        results = []
        for op in self.ops:
            if op[0] == "incr":
                results.append(await self.redis.incr(op[1]))
            else:
                results.append(await self.redis.expire(op[1], op[2]))
        self.ops = []
        return results


class FakeRedis:
    """In-memory stand-in for the redis.asyncio client"""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise ConnectionError("redis unavailable")

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.store[key] = value
        self.ttls[key] = ex
        return True

    async def incr(self, key):
        self._check()
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def expire(self, key, seconds):
        self._check()
        self.ttls[key] = seconds
        return True

    async def ping(self):
        self._check()
        return True

    def pipeline(self):
        return FakePipeline(self)

    async def aclose(self):
        self.closed = True


class FakeTextModerator:
    def __init__(self, result=None, error=None):
        self.result = result or TextAnalysisResult()
        self.error = error
        self.calls = []

    async def analyze_text(self, text):
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.result


class FakeImageModerator:
    def __init__(self, result=None, error=None):
        self.result = result or ImageAnalysisResult()
        self.error = error
        self.calls = []

    async def analyze_image(self, image_url):
        self.calls.append(image_url)
        if self.error:
            raise self.error
        return self.result


class FakeVideoModerator:
    def __init__(self, job_id="job-1", poll_result=None, start_error=None, poll_error=None):
        self.job_id = job_id
        self.poll_result = poll_result
        self.start_error = start_error
        self.poll_error = poll_error
        self.started = []
        self.polled = []

    async def start_job(self, video_url):
        self.started.append(video_url)
        if self.start_error:
            raise self.start_error
        return self.job_id

    async def poll_job(self, job_id):
        self.polled.append(job_id)
        if self.poll_error:
            raise self.poll_error
        if self.poll_result is not None:
            return self.poll_result
        return VideoAnalysisResult(job_id=job_id, status=VideoJobStatus.IN_PROGRESS)
