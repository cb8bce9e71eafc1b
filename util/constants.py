class InternalURIs:
    API = "/api"
    V1 = API + "/v1"
    UPLOADS = V1 + "/uploads"
    UPLOAD_STATS = UPLOADS + "/stats"
    UPLOAD_EVENTS = UPLOADS + "/events"
    UPLOADS_COMPLETED = UPLOADS + "/completed"
    UPLOAD = UPLOADS + "/{job_id}"
    UPLOAD_PAUSE = UPLOAD + "/pause"
    UPLOAD_RESUME = UPLOAD + "/resume"
    UPLOAD_CANCEL = UPLOAD + "/cancel"
    UPLOAD_RETRY = UPLOAD + "/retry"
    NETWORK = V1 + "/network"


class ExternalURIs:
    # Relative to settings.UPLOAD_API_BASE_URL
    INITIALIZE = "/initialize"
    CHUNK = "/chunk"
    FILE = "/file"
    PROGRESS = "/progress/{upload_id}"
    CANCEL = "/cancel/{upload_id}"


KIB = 1024
MIB = 1024 * KIB

# Request bodies are streamed in blocks of this size so progress can be reported mid-request.
BODY_BLOCK_SIZE = 64 * KIB
