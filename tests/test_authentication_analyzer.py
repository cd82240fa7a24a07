"""Tests for the authentication & authorization analyzer."""

from larashield.analyzers.authentication import AuthenticationAnalyzer
from larashield.models import Severity, Status


def issues_of_type(result, issue_type):
    return [i for i in result.issues if i.metadata.get("issue_type") == issue_type]


POST_CONTROLLER = """
    <?php

    namespace App\\Http\\Controllers;

    class PostController extends Controller
    {
        public function index()
        {
            return view('posts.index');
        }

        public function destroy($id)
        {
            Post::findOrFail($id)->delete();
        }
    }
"""


class TestRoutes:
    """State-mutating routes without authentication."""

    def test_post_route_without_middleware_fails(self, make_project, run_analyzer):
        base = make_project({"routes/web.php": """
            <?php
            Route::post('/users', [UserController::class, 'store']);
        """})
        result = run_analyzer(AuthenticationAnalyzer, base)
        assert result.status == Status.FAILED
        issues = issues_of_type(result, "unauthenticated_route")
        assert len(issues) == 1
        issue = issues[0]
        assert issue.severity == Severity.HIGH
        assert issue.metadata["method"] == "POST"
        assert issue.metadata["path"] == "/users"
        assert issue.location.file == "routes/web.php"
        assert issue.location.line == 2

    def test_malformed_resource_does_not_hide_other_routes(self, make_project, run_analyzer):
        base = make_project({"routes/web.php": """
            <?php
            Route::resource('.', PhotoController::class);
            Route::post('/users', [UserController::class, 'store']);
        """})
        result = run_analyzer(AuthenticationAnalyzer, base)
        assert result.status == Status.FAILED
        assert [i.metadata["path"] for i in issues_of_type(result, "unauthenticated_route")] == ["/users"]

    def test_login_route_is_public(self, make_project, run_analyzer):
        base = make_project({"routes/web.php": """
            <?php
            Route::post('/login', [LoginController::class, 'authenticate']);
        """})
        result = run_analyzer(AuthenticationAnalyzer, base)
        assert result.status == Status.PASSED
        assert result.issues == []

    def test_get_routes_are_not_flagged(self, make_project, run_analyzer):
        base = make_project({"routes/web.php": """
            <?php
            Route::get('/users', [UserController::class, 'index']);
        """})
        assert run_analyzer(AuthenticationAnalyzer, base).status == Status.PASSED

    def test_group_middleware_protects_nested_routes(self, make_project, run_analyzer):
        base = make_project({"routes/web.php": """
            <?php
            Route::middleware(['auth:sanctum'])->group(function () {
                Route::post('/posts', [PostController::class, 'store']);
                Route::put('/posts/{post}', [PostController::class, 'update']);
            });
            Route::delete('/comments/{comment}', [CommentController::class, 'destroy']);
        """})
        result = run_analyzer(AuthenticationAnalyzer, base)
        paths = [i.metadata["path"] for i in issues_of_type(result, "unauthenticated_route")]
        assert paths == ["/comments/{comment}"]

    def test_without_middleware_removes_auth(self, make_project, run_analyzer):
        base = make_project({"routes/web.php": """
            <?php
            Route::middleware('auth')->group(function () {
                Route::post('/a', fn () => 1);
                Route::post('/b', fn () => 1)->withoutMiddleware('auth');
            });
        """})
        result = run_analyzer(AuthenticationAnalyzer, base)
        paths = [i.metadata["path"] for i in issues_of_type(result, "unauthenticated_route")]
        assert paths == ["/b"]
        assert issues_of_type(result, "unauthenticated_route_group") == []

    def test_unauthenticated_group_is_reported(self, make_project, run_analyzer):
        base = make_project({"routes/web.php": """
            <?php
            Route::prefix('admin')->middleware('throttle:60,1')->group(function () {
                Route::get('/stats', fn () => 1);
                Route::post('/users', [UserController::class, 'store']);
                Route::delete('/users/{user}', [UserController::class, 'destroy']);
            });
            Route::group(['prefix' => 'reports'], function () {
                Route::get('/daily', fn () => 1);
            });
        """})
        result = run_analyzer(AuthenticationAnalyzer, base)
        groups = issues_of_type(result, "unauthenticated_route_group")
        assert len(groups) == 1
        group = groups[0]
        assert group.message == "Route group without authentication middleware"
        assert group.severity == Severity.MEDIUM
        assert group.location.line == 2
        assert group.metadata["routes"] == ["POST /admin/users", "DELETE /admin/users/{user}"]
        assert len(issues_of_type(result, "unauthenticated_route")) == 2

    def test_configured_public_route(self, make_project, run_analyzer):
        base = make_project({"routes/api.php": """
            <?php
            Route::post('/webhooks/stripe', [StripeController::class, 'handle']);
        """})
        config = {"security": {"authentication": {"public_routes": ["webhooks/*"]}}}
        assert run_analyzer(AuthenticationAnalyzer, base, config).status == Status.PASSED

    def test_custom_auth_middleware(self, make_project, run_analyzer):
        base = make_project({"routes/api.php": """
            <?php
            Route::post('/orders', fn () => 1)->middleware('jwt.auth');
        """})
        config = {"security": {"authentication": {"auth_middleware": ["jwt.auth"]}}}
        assert run_analyzer(AuthenticationAnalyzer, base, config).status == Status.PASSED

    def test_route_passes_when_controller_authorizes(self, make_project, run_analyzer):
        base = make_project({
            "routes/web.php": """
                <?php
                Route::post('/posts', [PostController::class, 'store']);
            """,
            "app/Http/Controllers/PostController.php": """
                <?php
                class PostController extends Controller
                {
                    public function store(Request $request)
                    {
                        $this->authorize('create', Post::class);
                        Post::create($request->validated());
                    }
                }
            """,
        })
        assert run_analyzer(AuthenticationAnalyzer, base).status == Status.PASSED


class TestControllers:
    """Sensitive controller actions without protection."""

    def test_route_coverage_suppresses_controller_finding(self, make_project, run_analyzer):
        base = make_project({
            "routes/web.php": """
                <?php
                Route::delete('/posts/{id}', [PostController::class, 'destroy'])->middleware('auth');
            """,
            "app/Http/Controllers/PostController.php": POST_CONTROLLER,
        })
        result = run_analyzer(AuthenticationAnalyzer, base)
        assert result.status == Status.PASSED
        assert result.issues == []

    def test_unrouted_sensitive_method_is_flagged(self, make_project, run_analyzer):
        base = make_project({"app/Http/Controllers/PostController.php": POST_CONTROLLER})
        result = run_analyzer(AuthenticationAnalyzer, base)
        issues = issues_of_type(result, "unprotected_controller_method")
        assert [i.metadata["method"] for i in issues] == ["destroy"]
        assert issues[0].message == "Sensitive method PostController::destroy() without authentication check"
        assert issues[0].code == "public function destroy($id)"
        assert result.status == Status.FAILED

    def test_constructor_middleware_with_except(self, make_project, run_analyzer):
        base = make_project({"app/Http/Controllers/PostController.php": """
            <?php
            class PostController extends Controller
            {
                public function __construct()
                {
                    $this->middleware('auth')->except(['index', 'show', 'store']);
                }

                public function store() {}

                public function update() {}
            }
        """})
        result = run_analyzer(AuthenticationAnalyzer, base)
        methods = [i.metadata["method"] for i in issues_of_type(result, "unprotected_controller_method")]
        assert methods == ["store"]

    def test_static_middleware_method(self, make_project, run_analyzer):
        base = make_project({"app/Http/Controllers/PostController.php": """
            <?php
            use Illuminate\\Routing\\Controllers\\Middleware;

            class PostController extends Controller
            {
                public static function middleware(): array
                {
                    return [
                        new Middleware('auth', only: ['destroy']),
                    ];
                }

                public function destroy() {}

                public function edit() {}
            }
        """})
        result = run_analyzer(AuthenticationAnalyzer, base)
        methods = [i.metadata["method"] for i in issues_of_type(result, "unprotected_controller_method")]
        assert methods == ["edit"]

    def test_authorize_resource_protects_actions(self, make_project, run_analyzer):
        base = make_project({"app/Http/Controllers/PostController.php": """
            <?php
            class PostController extends Controller
            {
                public function __construct()
                {
                    $this->authorizeResource(Post::class, 'post');
                }

                public function update() {}
            }
        """})
        assert run_analyzer(AuthenticationAnalyzer, base).status == Status.PASSED

    def test_private_and_non_sensitive_methods_ignored(self, make_project, run_analyzer):
        base = make_project({"app/Http/Controllers/PostController.php": """
            <?php
            class PostController extends Controller
            {
                public function index() {}
                protected function store() {}
                private function destroy() {}
            }
        """})
        assert run_analyzer(AuthenticationAnalyzer, base).status == Status.PASSED


class TestUnsafeAuthUser:
    """Dereferences of Auth::user() without a null check."""

    def test_unguarded_dereference(self, make_project, run_analyzer):
        base = make_project({"app/Services/Greeter.php": """
            <?php
            class Greeter
            {
                public function greet()
                {
                    return 'Hi ' . Auth::user()->name;
                }
            }
        """})
        result = run_analyzer(AuthenticationAnalyzer, base)
        issues = issues_of_type(result, "unsafe_auth_user")
        assert len(issues) == 1
        assert issues[0].severity == Severity.MEDIUM
        assert issues[0].metadata["method"] == "Auth::user()"
        assert issues[0].location.line == 6
        assert result.status == Status.WARNING

    def test_guarded_and_nullsafe_uses(self, make_project, run_analyzer):
        base = make_project({"app/Services/Greeter.php": """
            <?php
            class Greeter
            {
                public function a()
                {
                    if (Auth::check()) {
                        return Auth::user()->name;
                    }
                }

                public function b()
                {
                    return auth()->user()?->name;
                }

                public function c()
                {
                    if (! auth()->check()) {
                        abort(401);
                    }
                    return auth()->user()->email;
                }

                public function d()
                {
                    return Auth::check() ? Auth::user()->name : 'guest';
                }
            }
        """})
        result = run_analyzer(AuthenticationAnalyzer, base)
        assert issues_of_type(result, "unsafe_auth_user") == []

    def test_auth_helper_dereference(self, make_project, run_analyzer):
        base = make_project({"app/Services/Profile.php": """
            <?php
            function profile_email()
            {
                return auth()->user()->email;
            }
        """})
        result = run_analyzer(AuthenticationAnalyzer, base)
        issues = issues_of_type(result, "unsafe_auth_user")
        assert [i.metadata["method"] for i in issues] == ["auth()->user()"]
        assert issues[0].metadata["check_method"] == "auth()->check()"


class TestLifecycle:
    """Skip behaviour and metadata."""

    def test_skips_empty_project(self, tmp_path, run_analyzer):
        result = run_analyzer(AuthenticationAnalyzer, tmp_path)
        assert result.status == Status.SKIPPED
        assert result.message == "No routes or controllers found to analyze"

    def test_metadata(self):
        meta = AuthenticationAnalyzer().metadata()
        assert meta.id == "authentication-authorization"
        assert meta.severity == Severity.HIGH
