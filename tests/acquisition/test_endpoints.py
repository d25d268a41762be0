from edgefetch.acquisition.endpoints import HubEndpoints, encode_path, encode_segment


def test_file_url_encodes_each_segment():
    endpoints = HubEndpoints("https://huggingface.co/")
    url = endpoints.file_url("owner/my model", "main", "sub dir/file name.gguf")

    assert url == (
        "https://huggingface.co/owner/my%20model/resolve/main/"
        "sub%20dir/file%20name.gguf"
    )


def test_revision_slashes_are_encoded_not_structural():
    endpoints = HubEndpoints()
    url = endpoints.file_url("owner/repo", "refs/pr/1", "model.gguf")

    assert "/resolve/refs%2Fpr%2F1/model.gguf" in url


def test_manifest_url_main_uses_bare_endpoint():
    endpoints = HubEndpoints("https://hub.test")

    assert endpoints.manifest_url("a/b") == "https://hub.test/api/models/a/b"
    assert endpoints.manifest_url("a/b", "main") == "https://hub.test/api/models/a/b"
    assert (
        endpoints.manifest_url("a/b", "v1.0")
        == "https://hub.test/api/models/a/b/revision/v1.0"
    )


def test_encode_helpers():
    assert encode_segment("a/b c") == "a%2Fb%20c"
    assert encode_path("/x y/z/") == "x%20y/z"
